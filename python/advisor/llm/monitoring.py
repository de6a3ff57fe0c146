"""
Reasoner usage monitoring.

CostLedger:         token and dollar totals per session. Recording never
                    blocks the caller.
PerformanceMonitor: latency and success rate over a sliding window of
                    recent reasoner calls.
"""
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Deque, Dict

import numpy as np

from advisor.config.constants import CONSTANTS

logger = logging.getLogger(__name__)


# USD per 1M tokens
MODEL_PRICING: Dict[str, Dict[str, float]] = {
    "llama-3.3-70b-versatile": {"input": 0.59, "output": 0.79},
    "llama-3.1-70b-versatile": {"input": 0.59, "output": 0.79},
    "gpt-4o": {"input": 2.50, "output": 10.00},
    "gpt-4o-mini": {"input": 0.15, "output": 0.60},
    "gpt-4-turbo": {"input": 10.00, "output": 30.00},
    "claude-3-5-haiku-latest": {"input": 0.80, "output": 4.00},
    "claude-3-5-sonnet-latest": {"input": 3.00, "output": 15.00},
    "rule-based": {"input": 0.0, "output": 0.0},
    "default": {"input": 0.50, "output": 1.00},
}


def calculate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    pricing = MODEL_PRICING.get(model, MODEL_PRICING["default"])
    return (
        input_tokens / 1_000_000 * pricing["input"]
        + output_tokens / 1_000_000 * pricing["output"]
    )


@dataclass
class CostMetrics:
    total_tokens: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    total_cost: float = 0.0
    request_count: int = 0
    model_usage: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_tokens": self.total_tokens,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_cost": round(self.total_cost, 6),
            "request_count": self.request_count,
            "model_usage": dict(self.model_usage),
        }


class CostLedger:
    """Per-session cost accounting, safe to share across tasks and threads."""

    def __init__(self):
        self._lock = Lock()
        self._sessions: Dict[str, CostMetrics] = {}

    def record(self, session_id: str, model: str,
               input_tokens: int, output_tokens: int) -> float:
        """Add one call's usage; returns the cost of that call."""
        cost = calculate_cost(model, input_tokens, output_tokens)
        with self._lock:
            metrics = self._sessions.setdefault(session_id, CostMetrics())
            metrics.input_tokens += input_tokens
            metrics.output_tokens += output_tokens
            metrics.total_tokens += input_tokens + output_tokens
            metrics.total_cost += cost
            metrics.request_count += 1
            metrics.model_usage[model] = metrics.model_usage.get(model, 0) + 1
        logger.debug(
            f"[{session_id}] {model}: {input_tokens}+{output_tokens} tokens, ${cost:.6f}"
        )
        return cost

    def get(self, session_id: str) -> CostMetrics:
        with self._lock:
            metrics = self._sessions.get(session_id)
            if metrics is None:
                return CostMetrics()
            return CostMetrics(
                total_tokens=metrics.total_tokens,
                input_tokens=metrics.input_tokens,
                output_tokens=metrics.output_tokens,
                total_cost=metrics.total_cost,
                request_count=metrics.request_count,
                model_usage=dict(metrics.model_usage),
            )

    def clear(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def totals(self) -> CostMetrics:
        with self._lock:
            total = CostMetrics()
            for m in self._sessions.values():
                total.total_tokens += m.total_tokens
                total.input_tokens += m.input_tokens
                total.output_tokens += m.output_tokens
                total.total_cost += m.total_cost
                total.request_count += m.request_count
                for model, count in m.model_usage.items():
                    total.model_usage[model] = total.model_usage.get(model, 0) + count
            return total


@dataclass
class _CallSample:
    latency_ms: float
    success: bool
    timestamp: float


class PerformanceMonitor:
    """Sliding window of recent reasoner calls."""

    def __init__(self, window: int = CONSTANTS.monitoring.RESPONSE_WINDOW):
        self._lock = Lock()
        self._samples: Deque[_CallSample] = deque(maxlen=window)
        self.total_requests = 0
        self.successful_requests = 0
        self.failed_requests = 0
        self.start_time = time.time()

    def record(self, latency_ms: float, success: bool) -> None:
        with self._lock:
            self._samples.append(_CallSample(latency_ms, success, time.time()))
            self.total_requests += 1
            if success:
                self.successful_requests += 1
            else:
                self.failed_requests += 1

    def get_metrics(self) -> Dict[str, Any]:
        with self._lock:
            latencies = np.array([s.latency_ms for s in self._samples], dtype=float)
            total = self.total_requests
            successful = self.successful_requests
            failed = self.failed_requests
        elapsed = max(time.time() - self.start_time, 1e-9)
        return {
            "total_requests": total,
            "successful_requests": successful,
            "failed_requests": failed,
            "success_rate": successful / total if total else 1.0,
            "error_rate": failed / total if total else 0.0,
            "avg_response_ms": float(latencies.mean()) if latencies.size else 0.0,
            "p95_response_ms": float(np.percentile(latencies, 95)) if latencies.size else 0.0,
            "throughput_per_min": total / elapsed * 60.0,
        }

    def reset(self) -> None:
        with self._lock:
            self._samples.clear()
            self.total_requests = 0
            self.successful_requests = 0
            self.failed_requests = 0
            self.start_time = time.time()
