"""Exponential reconnection backoff."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class ReconnectPolicy:
    """
    delay(attempt) = base_delay * 2 ** (attempt - 1), capped at max_delay,
    for at most max_attempts attempts. Delays are in seconds.

    Usage:
        policy = ReconnectPolicy()
        while (delay := policy.next_delay()) is not None:
            await asyncio.sleep(delay)
            if await try_connect():
                policy.reset()
                break
    """
    base_delay: float = 1.0
    max_delay: float = 30.0
    max_attempts: int = 5

    attempts: int = field(default=0, init=False)

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]]) -> "ReconnectPolicy":
        """Build from the "reconnect" block of the client config."""
        settings = (config or {}).get("reconnect") or {}
        return cls(
            base_delay=float(settings.get("base_delay", 1.0)),
            max_delay=float(settings.get("max_delay", 30.0)),
            max_attempts=int(settings.get("max_attempts", 5)),
        )

    def delay_for(self, attempt: int) -> float:
        """Delay before the given 1-based attempt."""
        if attempt < 1:
            raise ValueError("attempt is 1-based")
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def next_delay(self) -> Optional[float]:
        """Count one more attempt and return its delay, or None when exhausted."""
        if self.exhausted:
            return None
        self.attempts += 1
        return self.delay_for(self.attempts)

    def reset(self) -> None:
        """Call after a successful reconnection."""
        self.attempts = 0
