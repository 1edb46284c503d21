"""Side-effect dispatcher interface (port).

The evaluation core decides WHAT to show or play when an alert fires;
platform adapters decide HOW (toast widget, push notification,
vibration motor, tone generator, webhook).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from src.domain.models.enums import Condition


@dataclass(frozen=True)
class NotificationPayload:
    """Push notification content."""

    title: str
    body: str
    notification_id: int
    condition: Condition | None = None


@dataclass(frozen=True)
class SoundSelection:
    """Tone to play on trigger."""

    sound_id: int
    tone: str
    duration_ms: int
    loop: bool = False
    loop_pause_ms: int = 0


class SideEffectDispatcher(ABC):
    """Delivers trigger side effects. Each call may fail independently."""

    @abstractmethod
    async def show_toast(self, text: str) -> None:
        ...

    @abstractmethod
    async def send_notification(self, payload: NotificationPayload) -> None:
        ...

    @abstractmethod
    async def vibrate(self, pattern: tuple[int, ...]) -> None:
        """Vibrate with alternating pulse/pause durations in milliseconds."""
        ...

    @abstractmethod
    async def play_sound(self, sound: SoundSelection) -> None:
        ...
