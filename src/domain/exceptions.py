"""Domain exceptions for alert evaluation.

None of these ever escape the evaluation loop: they are raised inside
per-alert helpers and turned into a skip for that alert.
"""


class AlertEvaluationError(Exception):
    """Base class for per-alert evaluation failures."""

    def __init__(self, alert_id: str, message: str) -> None:
        self.alert_id = alert_id
        super().__init__(f"Alert {alert_id}: {message}")


class DataUnavailableError(AlertEvaluationError):
    """Price, candle or indicator data is not available yet."""


class MalformedSpecError(AlertEvaluationError):
    """Drawing or algo parameters are missing or inconsistent."""


class NotificationDeliveryError(Exception):
    """A side effect could not be delivered to its target."""
