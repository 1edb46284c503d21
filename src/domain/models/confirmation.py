"""Runtime confirmation state models (never persisted)."""

from dataclasses import dataclass

from src.domain.models.enums import ConfirmationOutcome


@dataclass
class ConfirmationState:
    """Mutable per-alert confirmation progress.

    Created lazily on first evaluation, cleared when the condition reverts,
    terminal once ``triggered`` is set.
    """

    pending_delay_start: int | None = None  # Epoch ms the time delay started
    candle_delay_count: int = 0  # Consecutive satisfying closed candles
    triggered: bool = False
    last_closed_candle: int | None = None  # open_time of last consumed close

    def clear_progress(self) -> None:
        """Drop any accumulated timer or candle progress."""
        self.pending_delay_start = None
        self.candle_delay_count = 0


@dataclass(frozen=True)
class ConfirmationResult:
    """Outcome of feeding one tick into the state machine."""

    outcome: ConfirmationOutcome
    count: int | None = None  # Candle count for COUNTING
    elapsed_ms: int | None = None  # Timer progress for WAITING

    @property
    def fires(self) -> bool:
        """Whether the alert fires on this tick."""
        return self.outcome.fires
