"""
Session Repository - storage for AgentState between turns.

Key principles:
- Abstract interface for swappable implementations
- In-memory for tests and single-process runs
- Redis-backed for deployments, with TTL expiry and in-memory fallback
  when Redis is unreachable

Lifecycle: open() stores a new session, get()/put() load and save it per
turn, close() marks it complete, evict() deletes it.
"""
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import replace
from threading import Lock
from typing import Dict, List, Optional

from advisor.agent.models import AgentState, NextAction
from advisor.agent.state import initialize_agent_state
from advisor.errors import SessionNotFound

logger = logging.getLogger(__name__)


class SessionRepository(ABC):
    """
    Abstract repository for agent sessions.

    Implementations:
    - InMemorySessionRepository: ephemeral, per process
    - RedisSessionRepository: shared, expires idle sessions
    """

    async def open(self, session_id: Optional[str] = None) -> AgentState:
        """Create and store a fresh session with a uniform prior."""
        state = initialize_agent_state(session_id)
        await self.put(state)
        logger.info(f"Opened session {state.session_id}")
        return state

    @abstractmethod
    async def get(self, session_id: str) -> Optional[AgentState]:
        pass

    @abstractmethod
    async def put(self, state: AgentState) -> None:
        pass

    @abstractmethod
    async def evict(self, session_id: str) -> None:
        pass

    @abstractmethod
    async def list_ids(self) -> List[str]:
        pass

    async def require(self, session_id: str) -> AgentState:
        state = await self.get(session_id)
        if state is None:
            raise SessionNotFound(session_id)
        return state

    async def close(self, session_id: str) -> Optional[AgentState]:
        """Mark the session complete; returns the closed state if it existed."""
        state = await self.get(session_id)
        if state is None:
            return None
        if state.next_action != NextAction.COMPLETE:
            state = replace(state, next_action=NextAction.COMPLETE)
            await self.put(state)
        logger.info(f"Closed session {session_id}")
        return state

    async def shutdown(self) -> None:
        """Release connections held by the repository."""


class InMemorySessionRepository(SessionRepository):

    def __init__(self):
        self._lock = Lock()
        self._sessions: Dict[str, AgentState] = {}

    async def get(self, session_id: str) -> Optional[AgentState]:
        with self._lock:
            return self._sessions.get(session_id)

    async def put(self, state: AgentState) -> None:
        with self._lock:
            self._sessions[state.session_id] = state

    async def evict(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    async def list_ids(self) -> List[str]:
        with self._lock:
            return list(self._sessions)


class RedisSessionRepository(SessionRepository):
    """
    Redis persistence for sessions.

    Features:
    - Survives process restarts
    - Idle sessions expire via TTL
    - Falls back to in-memory storage when Redis calls fail
    """

    SESSION_TTL = 3600  # 1 hour idle
    KEY_PREFIX = "advisor:session:"

    def __init__(self, redis_client, ttl_seconds: Optional[int] = None):
        """
        Args:
            redis_client: redis.asyncio client
            ttl_seconds: Idle expiry, defaults to SESSION_TTL
        """
        self.redis = redis_client
        self.ttl = ttl_seconds or self.SESSION_TTL
        self._memory = InMemorySessionRepository()

    def _key(self, session_id: str) -> str:
        return f"{self.KEY_PREFIX}{session_id}"

    async def get(self, session_id: str) -> Optional[AgentState]:
        # A memory copy only exists when the last write missed Redis, so it is newer
        state = await self._memory.get(session_id)
        if state is not None:
            return state
        try:
            data = await self.redis.get(self._key(session_id))
            if data:
                return AgentState.from_dict(json.loads(data))
        except Exception as e:
            logger.warning(f"Redis get failed: {e}")
        return None

    async def put(self, state: AgentState) -> None:
        try:
            await self.redis.setex(
                self._key(state.session_id),
                self.ttl,
                json.dumps(state.to_dict()),
            )
        except Exception as e:
            logger.warning(f"Redis store failed: {e}, falling back to memory")
            await self._memory.put(state)
            return
        await self._memory.evict(state.session_id)

    async def evict(self, session_id: str) -> None:
        try:
            await self.redis.delete(self._key(session_id))
        except Exception as e:
            logger.warning(f"Redis delete failed: {e}")
        await self._memory.evict(session_id)

    async def list_ids(self) -> List[str]:
        ids = set(await self._memory.list_ids())
        try:
            async for key in self.redis.scan_iter(match=f"{self.KEY_PREFIX}*"):
                if isinstance(key, bytes):
                    key = key.decode()
                ids.add(key[len(self.KEY_PREFIX):])
        except Exception as e:
            logger.warning(f"Redis scan failed: {e}")
        return sorted(ids)

    async def shutdown(self) -> None:
        try:
            await self.redis.aclose()
        except Exception as e:
            logger.warning(f"Redis close failed: {e}")


# Global instance
_repository: Optional[SessionRepository] = None


def get_session_repository() -> SessionRepository:
    """Get the global session repository, in-memory unless initialized."""
    global _repository
    if _repository is None:
        _repository = InMemorySessionRepository()
    return _repository


async def init_session_repository(
    redis_url: Optional[str] = None,
    ttl_seconds: Optional[int] = None,
) -> SessionRepository:
    """
    Initialize the global repository, using Redis when reachable.

    Args:
        redis_url: Redis connection URL (optional)
        ttl_seconds: Idle session expiry in Redis
    """
    global _repository

    if redis_url:
        try:
            import redis.asyncio as aioredis
            client = aioredis.from_url(
                redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            await client.ping()
            _repository = RedisSessionRepository(client, ttl_seconds)
            logger.info(f"Session repository using Redis at {redis_url}")
            return _repository
        except Exception as e:
            logger.warning(f"Redis unavailable ({e}), using in-memory sessions")

    _repository = InMemorySessionRepository()
    return _repository
