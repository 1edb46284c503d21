"""PostgreSQL implementation of AlertRepository."""

import json

from src.domain.interfaces.repositories import AlertRepository
from src.domain.models.alert import AlertActions, AlertHistoryRecord, AlertSpec
from src.infrastructure.config import get_settings
from src.infrastructure.database import execute, fetch, transaction

ALERT_COLUMNS = """
    id, symbol, target_type, target, target_value, condition,
    confirmation, interval, delay_seconds, delay_candles,
    actions, active, created_at
"""


class PostgresAlertRepository(AlertRepository):
    """PostgreSQL implementation of alert and history persistence.

    History is trimmed to the most recent ``history_limit`` records
    in the same transaction that inserts a new one.
    """

    def __init__(self, history_limit: int | None = None) -> None:
        self._history_limit = history_limit or get_settings().alert_history_limit

    async def get_alerts(self, symbol: str | None = None) -> list[AlertSpec]:
        """Get all alerts, optionally for one symbol."""
        if symbol is None:
            rows = await fetch(
                f"SELECT {ALERT_COLUMNS} FROM price_alerts ORDER BY created_at, id"
            )
        else:
            rows = await fetch(
                f"""
                SELECT {ALERT_COLUMNS} FROM price_alerts
                WHERE symbol = $1
                ORDER BY created_at, id
                """,
                symbol,
            )
        return [self._row_to_alert(row) for row in rows]

    async def save_alert(self, alert: AlertSpec) -> None:
        """Insert or replace an alert."""
        await execute(
            """
            INSERT INTO price_alerts (
                id, symbol, target_type, target, target_value, condition,
                confirmation, interval, delay_seconds, delay_candles,
                actions, active, created_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
            ON CONFLICT (id) DO UPDATE SET
                symbol = EXCLUDED.symbol,
                target_type = EXCLUDED.target_type,
                target = EXCLUDED.target,
                target_value = EXCLUDED.target_value,
                condition = EXCLUDED.condition,
                confirmation = EXCLUDED.confirmation,
                interval = EXCLUDED.interval,
                delay_seconds = EXCLUDED.delay_seconds,
                delay_candles = EXCLUDED.delay_candles,
                actions = EXCLUDED.actions,
                active = EXCLUDED.active
            """,
            alert.id,
            alert.symbol,
            alert.target_type.value,
            alert.target,
            alert.target_value,
            alert.condition.value,
            alert.confirmation.value,
            alert.interval.value if alert.interval else None,
            alert.delay_seconds,
            alert.delay_candles,
            alert.actions.model_dump_json(by_alias=True),
            alert.active,
            alert.created_at,
        )

    async def remove_alert(self, alert_id: str) -> None:
        """Delete an alert by id."""
        await execute("DELETE FROM price_alerts WHERE id = $1", alert_id)

    async def get_alert_history(self) -> list[AlertHistoryRecord]:
        """Get trigger history, newest first."""
        rows = await fetch(
            """
            SELECT symbol, message, target, price, timestamp
            FROM alert_history
            ORDER BY timestamp DESC, id DESC
            LIMIT $1
            """,
            self._history_limit,
        )
        return [
            AlertHistoryRecord(
                symbol=row["symbol"],
                message=row["message"],
                target=row["target"],
                price=row["price"],
                timestamp=row["timestamp"],
            )
            for row in rows
        ]

    async def add_alert_history(self, record: AlertHistoryRecord) -> None:
        """Insert a history record and drop anything beyond the limit."""
        async with transaction() as conn:
            await conn.execute(
                """
                INSERT INTO alert_history (symbol, message, target, price, timestamp)
                VALUES ($1, $2, $3, $4, $5)
                """,
                record.symbol,
                record.message,
                record.target,
                record.price,
                record.timestamp,
            )
            await conn.execute(
                """
                DELETE FROM alert_history
                WHERE id NOT IN (
                    SELECT id FROM alert_history
                    ORDER BY timestamp DESC, id DESC
                    LIMIT $1
                )
                """,
                self._history_limit,
            )

    async def clear_alert_history(self) -> None:
        """Delete all history records."""
        await execute("DELETE FROM alert_history")

    def _row_to_alert(self, row) -> AlertSpec:
        """Convert database row to AlertSpec model."""
        actions = row["actions"]
        if isinstance(actions, str):
            actions = json.loads(actions)

        return AlertSpec(
            id=row["id"],
            symbol=row["symbol"],
            target_type=row["target_type"],
            target=row["target"],
            target_value=row["target_value"],
            condition=row["condition"],
            confirmation=row["confirmation"],
            interval=row["interval"],
            delay_seconds=row["delay_seconds"],
            delay_candles=row["delay_candles"],
            actions=AlertActions.model_validate(actions or {}),
            active=row["active"],
            created_at=row["created_at"],
        )
