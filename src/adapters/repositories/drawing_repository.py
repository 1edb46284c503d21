"""PostgreSQL implementation of DrawingRepository."""

import json

from src.domain.interfaces.repositories import DrawingRepository
from src.domain.models.drawing import ChartPoint, DrawingSpec
from src.infrastructure.database import execute, fetch


class PostgresDrawingRepository(DrawingRepository):
    """Read access to chart drawings, plus a save used by tooling."""

    async def get_drawings(self, symbol: str) -> list[DrawingSpec]:
        rows = await fetch(
            """
            SELECT id, symbol, type, points, color, width
            FROM chart_drawings
            WHERE symbol = $1
            ORDER BY id
            """,
            symbol.upper(),
        )
        return [self._row_to_drawing(row) for row in rows]

    async def save_drawing(self, drawing: DrawingSpec) -> None:
        """Insert or replace a drawing."""
        await execute(
            """
            INSERT INTO chart_drawings (id, symbol, type, points, color, width)
            VALUES ($1, $2, $3, $4, $5, $6)
            ON CONFLICT (id) DO UPDATE SET
                symbol = EXCLUDED.symbol,
                type = EXCLUDED.type,
                points = EXCLUDED.points,
                color = EXCLUDED.color,
                width = EXCLUDED.width
            """,
            drawing.id,
            drawing.symbol.upper(),
            drawing.type.value,
            json.dumps([p.model_dump() for p in drawing.points]),
            drawing.color,
            drawing.width,
        )

    def _row_to_drawing(self, row) -> DrawingSpec:
        points = row["points"]
        if isinstance(points, str):
            points = json.loads(points)

        return DrawingSpec(
            id=row["id"],
            symbol=row["symbol"],
            type=row["type"],
            points=[ChartPoint(**p) for p in points or []],
            color=row["color"],
            width=row["width"],
        )
