"""Per-item outcomes and run statistics for the enrichment jobs."""

from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of one item's work: a value, or the error that ended it."""

    value: T | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def attempt(func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> Outcome[T]:
    """
    Await ``func(*args, **kwargs)`` and capture any ``Exception`` as an Outcome.

    Batch loops consume the Outcome instead of letting one item's failure
    escape and abort its siblings. Cancellation still propagates.
    """
    try:
        return Outcome(value=await func(*args, **kwargs))
    except Exception as e:
        return Outcome(error=e)


@dataclass
class RunStats:
    """Counters for one job invocation. Never persisted."""

    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    total_cost_usd: float = 0.0
    requests: int = 0

    @property
    def processed(self) -> int:
        return self.succeeded + self.failed + self.skipped

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["total_cost_usd"] = round(self.total_cost_usd, 6)
        return data
