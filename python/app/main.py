from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
import asyncio
import time
import logging
from typing import Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

# Load environment variables FIRST before anything else
from dotenv import load_dotenv
# Look for .env.local in project root (parent of python/)
project_root = Path(__file__).resolve().parent.parent.parent
env_local = project_root / ".env.local"
env_file = project_root / ".env"
if env_local.exists():
    load_dotenv(env_local)
elif env_file.exists():
    load_dotenv(env_file)

# Setup logging AFTER env vars loaded
from app.logging_config import setup_logging
setup_logging()

from app.config import Settings, get_settings
from app.schemas import (
    BreakersResponse,
    CreateSessionRequest,
    MetricsResponse,
    SessionResponse,
    TurnRequest,
    TurnResponse,
)
from advisor.agent.orchestrator import AgentOrchestrator
from advisor.agent.session_store import get_session_repository, init_session_repository
from advisor.errors import SessionNotFound
from advisor.llm.gateway import ReasonerGateway
from advisor.llm.reasoner import create_reasoner
from advisor.resilience.circuit_breaker import BreakerRegistry

logger = logging.getLogger(__name__)


class SessionLocks:
    """One asyncio.Lock per session so turns of a session never overlap."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def get(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    def discard(self, session_id: str) -> None:
        self._locks.pop(session_id, None)


def build_orchestrator(settings: Settings) -> AgentOrchestrator:
    """Wire the reasoner, gateway and orchestrator from settings."""
    client = create_reasoner(
        settings.llm_provider,
        api_key=settings.llm_api_key,
        model=settings.llm_model,
        request_timeout=settings.reasoner_timeout_seconds,
    )
    gateway = ReasonerGateway(
        client,
        breakers=BreakerRegistry(settings.breaker_config()),
        hard_timeout=settings.reasoner_timeout_seconds,
    )
    logger.info(f"Reasoner: {client.name} ({client.model})")
    return AgentOrchestrator(
        gateway,
        sessions=get_session_repository(),
        guardrails=settings.guardrail_config(),
        confidence_threshold=settings.confidence_threshold,
        max_iterations=settings.max_iterations,
        temperature=settings.llm_temperature,
    )


def create_app(
    orchestrator: Optional[AgentOrchestrator] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    settings = settings or get_settings()
    injected = orchestrator is not None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if not injected and settings.redis_url:
            app.state.orchestrator.sessions = await init_session_repository(
                settings.redis_url, settings.session_ttl_seconds
            )
        yield
        if not injected:
            await app.state.orchestrator.sessions.shutdown()

    app = FastAPI(
        title=settings.app_name,
        description="Conversational advisor for choosing a legal entity",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator or build_orchestrator(settings)
    app.state.session_locks = SessionLocks()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # In production, specify actual origins
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Request logging middleware
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all incoming requests with timing."""
        start_time = time.time()

        path = request.url.path
        skip_paths = ["/health", "/docs", "/openapi.json", "/favicon.ico"]
        if any(path.startswith(p) for p in skip_paths):
            return await call_next(request)

        logger.info(f"[API] {request.method} {path}")
        response = await call_next(request)

        duration_ms = (time.time() - start_time) * 1000
        status = response.status_code
        if status >= 400:
            logger.warning(f"[API] {request.method} {path} -> {status} ({duration_ms:.0f}ms)")
        else:
            logger.info(f"[API] {request.method} {path} -> {status} ({duration_ms:.0f}ms)")
        return response

    def get_orchestrator() -> AgentOrchestrator:
        return app.state.orchestrator

    @app.get("/")
    async def root():
        return {
            "name": settings.app_name,
            "status": "running",
            "timestamp": datetime.utcnow().isoformat(),
        }

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "timestamp": datetime.utcnow().isoformat(),
            "service": "legal-entity-advisor-api",
        }

    # Session endpoints
    @app.post("/api/sessions", response_model=TurnResponse, status_code=201)
    async def create_session(request: Optional[CreateSessionRequest] = None):
        orchestrator = get_orchestrator()
        session_id = request.session_id if request else None
        if session_id and await orchestrator.sessions.get(session_id) is not None:
            raise HTTPException(status_code=409, detail="Session already exists")
        result = await orchestrator.open_session(session_id)
        return TurnResponse.from_result(result)

    @app.post("/api/sessions/{session_id}/turns", response_model=TurnResponse)
    async def post_turn(session_id: str, request: TurnRequest):
        orchestrator = get_orchestrator()
        if await orchestrator.sessions.get(session_id) is None:
            raise HTTPException(status_code=404, detail="Session not found")
        async with app.state.session_locks.get(session_id):
            result = await orchestrator.process_turn(session_id, request.message)
        return TurnResponse.from_result(result)

    @app.get("/api/sessions/{session_id}", response_model=SessionResponse)
    async def get_session(session_id: str):
        try:
            state = await get_orchestrator().get_state(session_id)
        except SessionNotFound:
            raise HTTPException(status_code=404, detail="Session not found")
        return SessionResponse.from_state(state)

    @app.get("/api/sessions/{session_id}/metrics", response_model=MetricsResponse)
    async def get_session_metrics(session_id: str):
        orchestrator = get_orchestrator()
        if await orchestrator.sessions.get(session_id) is None:
            raise HTTPException(status_code=404, detail="Session not found")
        return MetricsResponse(session_id=session_id, **orchestrator.get_session_metrics(session_id))

    @app.delete("/api/sessions/{session_id}", status_code=204)
    async def delete_session(session_id: str):
        orchestrator = get_orchestrator()
        if await orchestrator.sessions.get(session_id) is None:
            raise HTTPException(status_code=404, detail="Session not found")
        await orchestrator.end_session(session_id)
        app.state.session_locks.discard(session_id)

    # Reasoner health
    @app.get("/api/breakers", response_model=BreakersResponse)
    async def get_breakers():
        gateway = get_orchestrator().gateway
        return BreakersResponse(
            breakers=gateway.breakers.get_all_stats(),
            performance=gateway.monitor.get_metrics(),
        )

    return app


app = create_app()
