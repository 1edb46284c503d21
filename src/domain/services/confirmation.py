"""Confirmation state machine for price alerts.

Decides, given whether an alert's crossing condition holds on this
tick, if the alert fires now, keeps waiting, or drops its progress.

States per alert:
    Idle -> Immediate-Fire | Pending-Time-Delay | Pending-Candle-Delay -> Triggered

Rules:
- immediate: fires on the first tick the condition holds
- time_delay: timer starts on the first matching tick; fires when
  ``now - start >= delay_seconds * 1000`` with the condition still holding
- candle_delay: counts consecutive closed candles that hold; fires at
  ``delay_candles``
- candle_close: fires on the next closed candle that holds, offset by
  ``delay_candles`` additional closes
- any reversal before confirmation drops all progress (no partial credit)
- Triggered is terminal: further ticks report ALREADY_TRIGGERED

The machine owns an explicit ``alert_id -> ConfirmationState`` side-table.
It only DECIDES; deactivating, persisting and notifying are done by the
trigger handler in the application layer.
"""

import math
from typing import Iterable, Sequence

from src.domain.models.alert import AlertSpec
from src.domain.models.confirmation import ConfirmationResult, ConfirmationState
from src.domain.models.enums import Condition, Confirmation, ConfirmationOutcome
from src.infrastructure.logging import get_logger

logger = get_logger(__name__)


def is_condition_met(
    condition: Condition,
    current_value: float,
    targets: Sequence[float],
) -> bool:
    """Crossing test shared by all confirmation modes.

    crossing_up holds when ``current >= target``, crossing_down when
    ``current <= target``. With several targets (channels, fib rays,
    zones) the condition holds if ANY target satisfies it. Non-finite
    values never satisfy it.

    Args:
        condition: Crossing direction
        current_value: Live price or indicator value
        targets: Resolved target price(s)

    Returns:
        True if the condition holds against at least one target
    """
    if not math.isfinite(current_value):
        logger.debug(f"Non-finite current value {current_value}, condition not met")
        return False

    for target in targets:
        if not math.isfinite(target):
            logger.debug(f"Skipping non-finite target {target}")
            continue
        if condition == Condition.CROSSING_UP and current_value >= target:
            return True
        if condition == Condition.CROSSING_DOWN and current_value <= target:
            return True
    return False


def matched_target(
    condition: Condition,
    current_value: float,
    targets: Sequence[float],
) -> float | None:
    """Return the first target satisfying the condition, if any."""
    for target in targets:
        if is_condition_met(condition, current_value, [target]):
            return target
    return None


class ConfirmationStateMachine:
    """Per-alert confirmation tracking.

    State is ephemeral: it is created lazily on the first evaluation of an
    alert and dropped when the alert disappears or is deactivated.
    """

    def __init__(self) -> None:
        self._states: dict[str, ConfirmationState] = {}

    def __contains__(self, alert_id: object) -> bool:
        return alert_id in self._states

    def __len__(self) -> int:
        return len(self._states)

    def get(self, alert_id: str) -> ConfirmationState | None:
        """Get state for an alert without creating it."""
        return self._states.get(alert_id)

    def state_for(self, alert_id: str) -> ConfirmationState:
        """Get state for an alert, creating a fresh Idle state if unknown."""
        state = self._states.get(alert_id)
        if state is None:
            state = ConfirmationState()
            self._states[alert_id] = state
        return state

    def drop(self, alert_id: str) -> None:
        """Forget an alert (deleted or deactivated externally)."""
        self._states.pop(alert_id, None)

    def retain(self, alert_ids: Iterable[str]) -> list[str]:
        """Drop state for every alert not in ``alert_ids``.

        Returns:
            Ids whose state was dropped
        """
        keep = set(alert_ids)
        dropped = [alert_id for alert_id in self._states if alert_id not in keep]
        for alert_id in dropped:
            del self._states[alert_id]
        return dropped

    def reset(self) -> None:
        """Drop all state."""
        self._states.clear()

    def evaluate(
        self,
        alert: AlertSpec,
        condition_met: bool,
        now_ms: int,
        candle_closed: bool = False,
        candle_open_time: int | None = None,
    ) -> ConfirmationResult:
        """Feed one tick into the state machine.

        Args:
            alert: Alert being evaluated
            condition_met: Result of the crossing test on this tick
            now_ms: Wall-clock time of the tick in epoch milliseconds
            candle_closed: Whether the candle behind this tick just closed
            candle_open_time: Open time of that candle, used to consume
                each closed candle at most once

        Returns:
            ConfirmationResult describing what happened
        """
        state = self.state_for(alert.id)

        if state.triggered:
            return ConfirmationResult(ConfirmationOutcome.ALREADY_TRIGGERED)

        match alert.confirmation:
            case Confirmation.IMMEDIATE:
                result = self._evaluate_immediate(state, condition_met)
            case Confirmation.TIME_DELAY:
                result = self._evaluate_time_delay(alert, state, condition_met, now_ms)
            case Confirmation.CANDLE_CLOSE | Confirmation.CANDLE_DELAY:
                result = self._evaluate_candles(
                    alert, state, condition_met, candle_closed, candle_open_time
                )

        if result.outcome != ConfirmationOutcome.NO_ACTION:
            logger.debug(
                f"Alert {alert.id} ({alert.symbol}, {alert.confirmation.value}): "
                f"{result.outcome.value}"
            )
        return result

    def _evaluate_immediate(
        self, state: ConfirmationState, condition_met: bool
    ) -> ConfirmationResult:
        if not condition_met:
            return ConfirmationResult(ConfirmationOutcome.NO_ACTION)
        state.triggered = True
        return ConfirmationResult(ConfirmationOutcome.TRIGGERED_IMMEDIATE)

    def _evaluate_time_delay(
        self,
        alert: AlertSpec,
        state: ConfirmationState,
        condition_met: bool,
        now_ms: int,
    ) -> ConfirmationResult:
        if not condition_met:
            if state.pending_delay_start is not None:
                state.pending_delay_start = None
                return ConfirmationResult(ConfirmationOutcome.TIMER_RESET)
            return ConfirmationResult(ConfirmationOutcome.NO_ACTION)

        # No delay configured: nothing to wait for
        if alert.delay_seconds <= 0:
            state.triggered = True
            state.clear_progress()
            return ConfirmationResult(ConfirmationOutcome.TRIGGERED, elapsed_ms=0)

        if state.pending_delay_start is None:
            state.pending_delay_start = now_ms
            return ConfirmationResult(ConfirmationOutcome.TIMER_STARTED, elapsed_ms=0)

        elapsed = now_ms - state.pending_delay_start
        if elapsed >= alert.delay_seconds * 1000:
            state.triggered = True
            state.clear_progress()
            return ConfirmationResult(ConfirmationOutcome.TRIGGERED, elapsed_ms=elapsed)

        return ConfirmationResult(ConfirmationOutcome.WAITING, elapsed_ms=elapsed)

    def _evaluate_candles(
        self,
        alert: AlertSpec,
        state: ConfirmationState,
        condition_met: bool,
        candle_closed: bool,
        candle_open_time: int | None,
    ) -> ConfirmationResult:
        if not candle_closed:
            if condition_met:
                return ConfirmationResult(ConfirmationOutcome.WAITING_CLOSE)
            return ConfirmationResult(ConfirmationOutcome.NO_ACTION)

        # Same close delivered twice counts once
        if candle_open_time is not None:
            if state.last_closed_candle == candle_open_time:
                return ConfirmationResult(ConfirmationOutcome.NO_ACTION)
            state.last_closed_candle = candle_open_time

        if not condition_met:
            if state.candle_delay_count > 0:
                state.candle_delay_count = 0
                return ConfirmationResult(ConfirmationOutcome.RESET, count=0)
            return ConfirmationResult(ConfirmationOutcome.NO_ACTION)

        state.candle_delay_count += 1
        count = state.candle_delay_count
        if count >= required_closes(alert):
            state.triggered = True
            state.candle_delay_count = 0
            return ConfirmationResult(ConfirmationOutcome.TRIGGERED, count=count)

        return ConfirmationResult(ConfirmationOutcome.COUNTING, count=count)


def required_closes(alert: AlertSpec) -> int:
    """Number of consecutive satisfying closed candles needed to fire.

    candle_delay needs ``delay_candles`` (at least one); candle_close
    needs the next close plus ``delay_candles`` more.
    """
    if alert.confirmation == Confirmation.CANDLE_CLOSE:
        return alert.delay_candles + 1
    return max(alert.delay_candles, 1)
