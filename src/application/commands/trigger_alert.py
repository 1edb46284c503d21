"""Alert trigger command.

Runs once when the confirmation state machine decides an alert fires:
1. Deactivate the alert (alerts are one-shot) and persist it
2. Append a history record for the user
3. Dispatch the configured side effects exactly once

Steps 1-2 are authoritative: a failed side effect is logged and
reported but never rolls the alert back to active.
"""

import zlib
from dataclasses import dataclass, field

from src.domain.interfaces.notifier import (
    NotificationPayload,
    SideEffectDispatcher,
    SoundSelection,
)
from src.domain.interfaces.repositories import AlertRepository
from src.domain.models.alert import AlertActions, AlertHistoryRecord, AlertSpec, now_ms
from src.domain.models.enums import Condition, SoundRepeat, TargetType, VibrationMode
from src.domain.rules import (
    DEFAULT_SOUND_TONE,
    NOTIFICATION_TITLE,
    SOUND_TONES,
    VIBRATION_CONTINUOUS_PATTERN,
    VIBRATION_ONCE_PATTERN,
)
from src.infrastructure.logging import get_logger

logger = get_logger(__name__)


def format_number(value: float) -> str:
    """Format a price without trailing zeros (150.0 -> "150")."""
    return f"{value:.8f}".rstrip("0").rstrip(".")


def format_target(alert: AlertSpec, target: float | None) -> str:
    """Target as shown to the user: indicator key for indicator alerts."""
    if alert.target_type == TargetType.INDICATOR and alert.target_value:
        return alert.target_value.upper()
    if target is None:
        return "?"
    return format_number(target)


def build_message(alert: AlertSpec, price: float, target: float | None) -> str:
    """Human-readable trigger message.

    Example: "BTCUSDT rose above 65000. Price: 65012.5"
    """
    verb = "rose above" if alert.condition == Condition.CROSSING_UP else "fell below"
    return f"{alert.symbol} {verb} {format_target(alert, target)}. Price: {format_number(price)}"


def notification_id(alert_id: str) -> int:
    """Stable positive notification id for an alert."""
    return zlib.crc32(alert_id.encode("utf-8")) & 0x7FFFFFFF


def vibration_pattern(mode: VibrationMode) -> tuple[int, ...] | None:
    """Pulse/pause pattern for a vibration mode, None for no vibration."""
    if mode == VibrationMode.ONCE:
        return VIBRATION_ONCE_PATTERN
    if mode == VibrationMode.CONTINUOUS:
        return VIBRATION_CONTINUOUS_PATTERN
    return None


def select_sound(actions: AlertActions) -> SoundSelection | None:
    """Tone for the configured sound id, None when silent."""
    if actions.sound_id <= 0:
        return None
    tone, default_ms = SOUND_TONES.get(actions.sound_id, DEFAULT_SOUND_TONE)
    duration_ms = actions.sound_duration * 1000 if actions.sound_duration else default_ms
    return SoundSelection(
        sound_id=actions.sound_id,
        tone=tone,
        duration_ms=duration_ms,
        loop=actions.sound_repeat == SoundRepeat.LOOP,
        loop_pause_ms=actions.loop_pause * 1000,
    )


@dataclass
class TriggerOutcome:
    """Result of handling a triggered alert."""

    alert: AlertSpec  # Deactivated copy as persisted
    record: AlertHistoryRecord
    effects_dispatched: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """Whether every configured side effect was delivered."""
        return not self.errors


class AlertTriggerHandler:
    """Command that applies a trigger decision.

    This command:
    1. Persists the alert with active=False
    2. Writes the history record
    3. Invokes the side-effect dispatcher (toast, notification,
       vibration, sound) as configured on the alert
    """

    def __init__(
        self,
        alert_repo: AlertRepository,
        dispatcher: SideEffectDispatcher | None = None,
    ) -> None:
        """Initialize the trigger handler.

        Args:
            alert_repo: Repository for alerts and history
            dispatcher: Side-effect dispatcher (None = state changes only)
        """
        self._alert_repo = alert_repo
        self._dispatcher = dispatcher

    async def handle(
        self,
        alert: AlertSpec,
        price: float,
        target: float | None,
        timestamp: int | None = None,
    ) -> TriggerOutcome:
        """Deactivate, record and notify for a fired alert.

        Args:
            alert: The alert that fired
            price: Current value that satisfied the condition
            target: Target that was crossed (None if not numeric)
            timestamp: Trigger time in epoch ms (defaults to now)

        Returns:
            TriggerOutcome with the persisted alert and any dispatch errors
        """
        deactivated = alert.model_copy(update={"active": False})
        await self._alert_repo.save_alert(deactivated)

        message = build_message(alert, price, target)
        record = AlertHistoryRecord(
            symbol=alert.symbol,
            message=message,
            target=format_target(alert, target),
            price=price,
            timestamp=timestamp if timestamp is not None else now_ms(),
        )
        await self._alert_repo.add_alert_history(record)

        logger.info(f"Alert {alert.id} triggered: {message}")

        outcome = TriggerOutcome(alert=deactivated, record=record)
        if self._dispatcher is not None:
            await self._dispatch(alert, message, outcome)
        return outcome

    async def _dispatch(
        self,
        alert: AlertSpec,
        message: str,
        outcome: TriggerOutcome,
    ) -> None:
        """Invoke each configured side effect; failures are isolated."""
        actions = alert.actions
        effects = []

        if actions.toast:
            effects.append(("toast", lambda: self._dispatcher.show_toast(message)))
        if actions.notification:
            payload = NotificationPayload(
                title=f"{alert.symbol} {NOTIFICATION_TITLE}",
                body=message,
                notification_id=notification_id(alert.id),
                condition=alert.condition,
            )
            effects.append(("notification", lambda: self._dispatcher.send_notification(payload)))
        pattern = vibration_pattern(actions.vibration)
        if pattern:
            effects.append(("vibration", lambda: self._dispatcher.vibrate(pattern)))
        sound = select_sound(actions)
        if sound:
            effects.append(("sound", lambda: self._dispatcher.play_sound(sound)))

        for name, call in effects:
            try:
                await call()
                outcome.effects_dispatched.append(name)
            except Exception as e:
                logger.error(f"Alert {alert.id}: {name} dispatch failed: {e}")
                outcome.errors.append(f"{name}: {e}")
