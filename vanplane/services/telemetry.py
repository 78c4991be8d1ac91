from __future__ import annotations

import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Deque


@dataclass(frozen=True)
class RequestSample:
    ts: float
    path: str
    status_code: int
    latency_ms: float


_request_samples: Deque[RequestSample] = deque(maxlen=20000)
_counters: dict[str, int] = defaultdict(int)


def record_request(*, path: str, status_code: int, latency_ms: float) -> None:
    # Track request latency and status for ops visibility.
    _request_samples.append(
        RequestSample(
            ts=time.time(),
            path=path,
            status_code=status_code,
            latency_ms=latency_ms,
        )
    )


def increment_counter(name: str, value: int = 1) -> None:
    # Counters observe worker passes and protocol outcomes; they never drive retry decisions.
    _counters[name] += value


def counters_snapshot() -> dict[str, int]:
    return dict(_counters)


def request_count(window_s: int) -> int:
    cutoff = time.time() - window_s
    return sum(1 for sample in _request_samples if sample.ts >= cutoff)


def reset_telemetry() -> None:
    # Tests reset process-wide telemetry between cases.
    _request_samples.clear()
    _counters.clear()
