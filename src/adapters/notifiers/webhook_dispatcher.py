"""Side-effect dispatcher for headless deployments.

Push notifications go to a Discord webhook. Toasts, vibration and sound
have no device to act on, so they are written to the log.
"""

import httpx

from src.domain.exceptions import NotificationDeliveryError
from src.domain.interfaces.notifier import (
    NotificationPayload,
    SideEffectDispatcher,
    SoundSelection,
)
from src.domain.models.enums import Condition
from src.infrastructure.discord import send_discord_message
from src.infrastructure.logging import get_logger

logger = get_logger(__name__)


class WebhookDispatcher(SideEffectDispatcher):
    """Deliver notifications through a Discord webhook."""

    def __init__(
        self,
        webhook_url: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            webhook_url: Webhook override (defaults to DISCORD_WEBHOOK_URL)
            client: Shared HTTP client
        """
        self._webhook_url = webhook_url
        self._client = client

    async def show_toast(self, text: str) -> None:
        logger.info(f"Toast: {text}")

    async def send_notification(self, payload: NotificationPayload) -> None:
        rising = None
        if payload.condition is not None:
            rising = payload.condition == Condition.CROSSING_UP

        try:
            delivered = await send_discord_message(
                title=payload.title,
                body=payload.body,
                rising=rising,
                webhook_url=self._webhook_url,
                client=self._client,
            )
        except httpx.HTTPError as e:
            raise NotificationDeliveryError(
                f"Discord webhook failed for notification {payload.notification_id}: {e}"
            ) from e

        if not delivered:
            logger.info(f"No webhook configured, notification logged: {payload.body}")

    async def vibrate(self, pattern: tuple[int, ...]) -> None:
        logger.info(f"Vibrate: pattern={list(pattern)}")

    async def play_sound(self, sound: SoundSelection) -> None:
        mode = f"loop every {sound.loop_pause_ms}ms" if sound.loop else "once"
        logger.info(f"Sound: {sound.tone} for {sound.duration_ms}ms ({mode})")
