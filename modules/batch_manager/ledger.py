"""
Concurrency ledger.

Per-provider and global in-flight counters. One ledger belongs to one
BatchManager and is only touched from its admission and completion
callbacks, which all run on the event loop thread.
"""
from typing import Dict, Optional

from shared.errors import PipelineError


class ConcurrencyLedger:
    """Slot accounting for in-flight generation jobs."""

    def __init__(self, global_cap: int, provider_caps: Optional[Dict[str, int]] = None):
        if global_cap < 1:
            raise ValueError("global_cap must be >= 1")
        self.global_cap = global_cap
        self._caps: Dict[str, int] = dict(provider_caps or {})
        self._in_flight: Dict[str, int] = {}
        self._peak: Dict[str, int] = {}
        self._global_in_flight = 0
        self.global_peak = 0

    def set_cap(self, provider_id: str, cap: int) -> None:
        if cap < 1:
            raise ValueError(f"Cap for {provider_id} must be >= 1")
        self._caps[provider_id] = cap

    def cap(self, provider_id: str) -> int:
        return self._caps.get(provider_id, 1)

    def in_flight(self, provider_id: Optional[str] = None) -> int:
        if provider_id is None:
            return self._global_in_flight
        return self._in_flight.get(provider_id, 0)

    def peak(self, provider_id: str) -> int:
        return self._peak.get(provider_id, 0)

    def has_headroom(self, provider_id: str) -> bool:
        return (
            self._global_in_flight < self.global_cap
            and self.in_flight(provider_id) < self.cap(provider_id)
        )

    def acquire(self, provider_id: str) -> None:
        if not self.has_headroom(provider_id):
            raise PipelineError(f"No free slot for {provider_id}", provider_id=provider_id)
        count = self.in_flight(provider_id) + 1
        self._in_flight[provider_id] = count
        self._peak[provider_id] = max(self.peak(provider_id), count)
        self._global_in_flight += 1
        self.global_peak = max(self.global_peak, self._global_in_flight)

    def release(self, provider_id: str) -> None:
        count = self.in_flight(provider_id)
        if count <= 0:
            raise PipelineError(f"Slot released twice for {provider_id}", provider_id=provider_id)
        self._in_flight[provider_id] = count - 1
        self._global_in_flight -= 1

    def snapshot(self) -> Dict[str, int]:
        data = {pid: n for pid, n in self._in_flight.items() if n}
        data["__global__"] = self._global_in_flight
        return data
