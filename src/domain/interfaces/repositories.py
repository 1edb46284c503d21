"""Repository interfaces (ports) for alert and drawing persistence."""

from abc import ABC, abstractmethod

from src.domain.models.alert import AlertHistoryRecord, AlertSpec
from src.domain.models.drawing import DrawingSpec


class AlertRepository(ABC):
    """Repository interface for alert rules and trigger history.

    The alert list is owned by persistence and may change between
    evaluation ticks; history is bounded to the most recent records.
    """

    @abstractmethod
    async def get_alerts(self, symbol: str | None = None) -> list[AlertSpec]:
        """Get all alerts, optionally filtered by symbol.

        Args:
            symbol: Only return alerts for this symbol

        Returns:
            Alerts in creation order
        """
        ...

    @abstractmethod
    async def save_alert(self, alert: AlertSpec) -> None:
        """Insert a new alert or replace the one with the same id."""
        ...

    @abstractmethod
    async def remove_alert(self, alert_id: str) -> None:
        """Delete an alert by id (no-op if unknown)."""
        ...

    @abstractmethod
    async def get_alert_history(self) -> list[AlertHistoryRecord]:
        """Get trigger history, newest first."""
        ...

    @abstractmethod
    async def add_alert_history(self, record: AlertHistoryRecord) -> None:
        """Prepend a history record, keeping only the most recent ones."""
        ...

    @abstractmethod
    async def clear_alert_history(self) -> None:
        """Delete all history records."""
        ...


class DrawingRepository(ABC):
    """Repository interface for chart drawings (owned by the chart UI)."""

    @abstractmethod
    async def get_drawings(self, symbol: str) -> list[DrawingSpec]:
        """Get all drawings for a symbol."""
        ...
