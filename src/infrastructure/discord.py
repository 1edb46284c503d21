"""Discord webhook delivery for triggered price alerts."""

import httpx

from src.infrastructure.config import get_settings
from src.infrastructure.logging import get_logger

logger = get_logger(__name__)

COLOR_UP = 0x26A69A
COLOR_DOWN = 0xEF5350


def get_webhook_url() -> str:
    """Get Discord webhook URL from settings."""
    return get_settings().discord_webhook_url


def build_embed(title: str, body: str, rising: bool | None = None) -> dict:
    """Build a Discord embed for an alert message."""
    embed = {"title": title, "description": body}
    if rising is not None:
        embed["color"] = COLOR_UP if rising else COLOR_DOWN
    return embed


async def send_discord_message(
    title: str,
    body: str,
    rising: bool | None = None,
    webhook_url: str | None = None,
    client: httpx.AsyncClient | None = None,
) -> bool:
    """Post an embed to a Discord webhook.

    Args:
        title: Embed title (e.g., "BTCUSDT Price Alert")
        body: Alert message
        rising: Colors the embed green/red when known
        webhook_url: Override for the configured webhook
        client: Shared HTTP client (a short-lived one is created if omitted)

    Returns:
        True if Discord accepted the message, False if no webhook is configured

    Raises:
        httpx.HTTPError: On transport failures or non-2xx responses
    """
    url = webhook_url if webhook_url is not None else get_webhook_url()
    if not url:
        return False

    payload = {"embeds": [build_embed(title, body, rising)]}

    if client is not None:
        response = await client.post(url, json=payload)
        response.raise_for_status()
    else:
        async with httpx.AsyncClient(timeout=get_settings().http_timeout_seconds) as own:
            response = await own.post(url, json=payload)
            response.raise_for_status()

    logger.debug(f"Discord message delivered: {title}")
    return True
