from __future__ import annotations

from dataclasses import dataclass, field
import json
import threading

import httpx


class FakeClock:
    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass(slots=True)
class RegistryStub:
    """Records document-creation requests and answers with a fixed response."""

    status_code: int = 200
    body: str = '{"value": "doc-1"}'
    requests: list[httpx.Request] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self.requests.append(request)
        return httpx.Response(self.status_code, text=self.body)

    def payloads(self) -> list[dict]:
        return [json.loads(request.content) for request in self.requests]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def admission_schedule(ledger, arrivals: list[float]) -> list[float]:
    """Replay arrivals against a ledger, waiting exactly as long as it asks."""
    admitted: list[float] = []
    now = 0.0
    for arrival in arrivals:
        now = max(now, arrival)
        wait = ledger.reserve(now)
        while wait > 0:
            now += wait
            wait = ledger.reserve(now)
        admitted.append(now)
    return admitted
