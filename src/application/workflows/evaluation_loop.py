"""Continuous alert evaluation loop.

This workflow runs on a fixed tick (1 s by default) and, per cycle:
1. Drains the tick buffer into the loop's market state
2. Refreshes alerts from the repository and forgets vanished ones
3. Resolves each active alert's current value and target(s)
4. Feeds the confirmation state machine
5. Hands fired alerts to the trigger handler

Per-alert current value:
- candle-based alerts (indicator targets or candle confirmation) read
  the candle close of their (symbol, interval); RSI alerts compare the
  RSI itself against the user threshold
- all other alerts read the ticker price (composites via their legs)

A failure while evaluating one alert is logged and recorded on the
cycle result; it never stops the loop or affects other alerts.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable

from src.adapters.data_feeds.tick_buffer import TickBuffer
from src.application.commands.trigger_alert import AlertTriggerHandler
from src.domain.exceptions import (
    AlertEvaluationError,
    DataUnavailableError,
    MalformedSpecError,
)
from src.domain.interfaces.notifier import SideEffectDispatcher
from src.domain.interfaces.repositories import AlertRepository, DrawingRepository
from src.domain.models.alert import AlertSpec, now_ms as current_ms
from src.domain.models.drawing import DrawingSpec
from src.domain.models.enums import ConfirmationOutcome, TargetType
from src.domain.models.market import CandleHistory, CandleUpdate, Ticker
from src.domain.rules import PRICE_HISTORY_LIMIT
from src.domain.services.confirmation import (
    ConfirmationStateMachine,
    is_condition_met,
    matched_target,
)
from src.domain.services.indicators import calculate_indicator
from src.domain.services.price_history import CandleSnapshot, MarketState, history_key
from src.domain.services.symbols import (
    expand_market_symbols,
    is_composite_symbol,
    normalize_symbol,
    resolve_price,
)
from src.domain.services.target_resolver import resolve_target_list, serialize_drawing
from src.infrastructure.logging import get_logger

logger = get_logger(__name__)


class EvaluationStatus(str, Enum):
    """Status of the evaluation loop."""

    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"
    ERROR = "error"


@dataclass
class AlertEvaluation:
    """What happened to one alert in one cycle."""

    alert_id: str
    symbol: str
    outcome: ConfirmationOutcome | None = None
    current_value: float | None = None
    targets: list[float] = field(default_factory=list)
    triggered: bool = False
    skipped: bool = False
    error: str | None = None


@dataclass
class EvaluationCycleResult:
    """Result of a single evaluation cycle."""

    cycle_number: int
    started_at: datetime
    completed_at: datetime
    timestamp_ms: int
    items_drained: int = 0
    alerts_checked: int = 0
    evaluations: list[AlertEvaluation] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def triggered(self) -> list[AlertEvaluation]:
        """Alerts that fired this cycle."""
        return [e for e in self.evaluations if e.triggered]

    @property
    def skipped(self) -> list[AlertEvaluation]:
        """Alerts skipped for missing data or malformed parameters."""
        return [e for e in self.evaluations if e.skipped]


@dataclass
class EvaluationLoopResult:
    """Result of evaluation loop execution."""

    status: EvaluationStatus
    started_at: datetime
    stopped_at: datetime | None = None
    cycles_completed: int = 0
    total_triggered: int = 0
    cycle_results: list[EvaluationCycleResult] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class AlertEvaluationLoop:
    """Periodic evaluator for all active alerts.

    The loop owns its market state and confirmation state; nothing is
    shared between loop instances.
    """

    def __init__(
        self,
        alert_repo: AlertRepository,
        drawing_repo: DrawingRepository | None = None,
        buffer: TickBuffer | None = None,
        dispatcher: SideEffectDispatcher | None = None,
        check_interval_seconds: float = 1.0,
        history_limit: int = PRICE_HISTORY_LIMIT,
    ):
        """Initialize the evaluation loop.

        Args:
            alert_repo: Source of alerts and sink for history
            drawing_repo: Source of drawings (drawing alerts are skipped without it)
            buffer: Market data ingestion buffer (a private one if omitted)
            dispatcher: Side-effect dispatcher for fired alerts
            check_interval_seconds: Time between cycles
            history_limit: Closes kept per (symbol, interval)
        """
        self._alert_repo = alert_repo
        self._drawing_repo = drawing_repo
        self._buffer = buffer or TickBuffer()
        self._check_interval = check_interval_seconds
        self._trigger_handler = AlertTriggerHandler(alert_repo, dispatcher)

        self._market = MarketState(history_limit=history_limit)
        self._machine = ConfirmationStateMachine()
        self._alerts: list[AlertSpec] = []

        self._status = EvaluationStatus.STOPPED
        self._cycle_count = 0
        self._stop_requested = False

    @property
    def status(self) -> EvaluationStatus:
        """Current loop status."""
        return self._status

    @property
    def is_running(self) -> bool:
        return self._status == EvaluationStatus.RUNNING

    @property
    def buffer(self) -> TickBuffer:
        return self._buffer

    @property
    def market(self) -> MarketState:
        return self._market

    @property
    def state_machine(self) -> ConfirmationStateMachine:
        return self._machine

    async def start(
        self,
        max_cycles: int | None = None,
        on_cycle_complete: Callable[[EvaluationCycleResult], None] | None = None,
    ) -> EvaluationLoopResult:
        """Start the evaluation loop.

        Args:
            max_cycles: Optional maximum cycles (None = run until stopped)
            on_cycle_complete: Optional callback after each cycle

        Returns:
            EvaluationLoopResult when loop ends
        """
        self._status = EvaluationStatus.RUNNING
        self._stop_requested = False
        self._cycle_count = 0

        started_at = datetime.now()
        cycle_results = []
        errors = []

        try:
            while not self._stop_requested:
                if max_cycles is not None and self._cycle_count >= max_cycles:
                    break

                if self._status != EvaluationStatus.PAUSED:
                    cycle_result = await self.run_evaluation_cycle()
                    cycle_results.append(cycle_result)

                    if on_cycle_complete:
                        on_cycle_complete(cycle_result)

                    self._cycle_count += 1

                if not self._stop_requested:
                    await asyncio.sleep(self._check_interval)

        except Exception as e:
            self._status = EvaluationStatus.ERROR
            logger.exception(f"Evaluation loop error: {e}")
            errors.append(f"Evaluation loop error: {e}")

        self._status = EvaluationStatus.STOPPED

        return EvaluationLoopResult(
            status=self._status,
            started_at=started_at,
            stopped_at=datetime.now(),
            cycles_completed=self._cycle_count,
            total_triggered=sum(len(c.triggered) for c in cycle_results),
            cycle_results=cycle_results,
            errors=errors,
        )

    def stop(self) -> None:
        """Request the loop to stop."""
        self._stop_requested = True

    def pause(self) -> None:
        """Pause evaluation (ticks keep buffering)."""
        if self._status == EvaluationStatus.RUNNING:
            self._status = EvaluationStatus.PAUSED

    def resume(self) -> None:
        """Resume a paused loop."""
        if self._status == EvaluationStatus.PAUSED:
            self._status = EvaluationStatus.RUNNING

    def subscriptions(self) -> tuple[set[str], set[tuple[str, str]]]:
        """Market data needed by the active alerts seen on the last refresh.

        Returns:
            (ticker market symbols, (symbol, interval) candle keys)
        """
        active = [a for a in self._alerts if a.active]
        ticker_symbols = [a.symbol for a in active if not a.needs_candles]
        candle_keys = {
            (normalize_symbol(a.symbol), a.candle_interval)
            for a in active
            if a.needs_candles
        }
        return set(expand_market_symbols(ticker_symbols)), candle_keys

    async def run_evaluation_cycle(self, now_ms: int | None = None) -> EvaluationCycleResult:
        """Run a single evaluation cycle.

        Args:
            now_ms: Tick time in epoch ms (defaults to the wall clock)

        Returns:
            EvaluationCycleResult with per-alert outcomes
        """
        started_at = datetime.now()
        now = now_ms if now_ms is not None else current_ms()
        errors = []

        drained = self._drain_buffer()

        try:
            await self._refresh_alerts()
        except Exception as e:
            logger.error(f"Failed to load alerts: {e}")
            errors.append(f"Failed to load alerts: {e}")

        drawings_cache: dict[str, dict[str, DrawingSpec]] = {}
        evaluations = []
        for alert in self._alerts:
            if not alert.active:
                continue
            evaluation = AlertEvaluation(alert_id=alert.id, symbol=alert.symbol)
            try:
                await self._evaluate_alert(alert, now, evaluation, drawings_cache)
            except DataUnavailableError as e:
                evaluation.skipped = True
                evaluation.error = str(e)
                logger.debug(f"Skipping: {e}")
            except AlertEvaluationError as e:
                evaluation.skipped = True
                evaluation.error = str(e)
                logger.warning(f"Skipping: {e}")
            except Exception as e:
                evaluation.error = str(e)
                errors.append(f"Error evaluating alert {alert.id}: {e}")
                logger.error(f"Error evaluating alert {alert.id} ({alert.symbol}): {e}")
            evaluations.append(evaluation)

        # Every close drained this cycle has been seen by every alert
        self._market.clear_pending_closes()

        return EvaluationCycleResult(
            cycle_number=self._cycle_count + 1,
            started_at=started_at,
            completed_at=datetime.now(),
            timestamp_ms=now,
            items_drained=drained,
            alerts_checked=len(evaluations),
            evaluations=evaluations,
            errors=errors,
        )

    def _drain_buffer(self) -> int:
        items = self._buffer.drain()
        for item in items:
            match item:
                case Ticker():
                    self._market.apply_ticker(item)
                case CandleUpdate():
                    self._market.apply_candle(item)
                case CandleHistory():
                    self._market.apply_history(item)
        return len(items)

    async def _refresh_alerts(self) -> None:
        """Reload alerts and forget state of alerts gone or deactivated."""
        self._alerts = await self._alert_repo.get_alerts()
        active_ids = [a.id for a in self._alerts if a.active]
        for alert_id in self._machine.retain(active_ids):
            logger.debug(f"Dropped confirmation state for alert {alert_id}")

        used_keys = {
            history_key(a.symbol, a.candle_interval)
            for a in self._alerts
            if a.active and a.needs_candles
        }
        for key in self._market.drop_unused(used_keys):
            logger.debug(f"Dropped price history {key}")

    async def _evaluate_alert(
        self,
        alert: AlertSpec,
        now: int,
        evaluation: AlertEvaluation,
        drawings_cache: dict[str, dict[str, DrawingSpec]],
    ) -> None:
        """Evaluate one alert, filling in ``evaluation``.

        Raises:
            DataUnavailableError: No price or candle data yet
            MalformedSpecError: Drawing missing or unusable
        """
        drawing_targets: list[float] | None = None
        if alert.target_type == TargetType.DRAWING:
            drawing_targets = await self._drawing_targets(alert, now, drawings_cache)

        if alert.needs_candles:
            events = self._market.candle_events(alert.symbol, alert.candle_interval)
            if not events:
                raise DataUnavailableError(
                    alert.id, f"no {alert.candle_interval} candles for {alert.symbol}"
                )
            for event in events:
                current, targets = self._candle_value(alert, event, drawing_targets)
                if await self._feed(alert, current, targets, now, evaluation,
                                    candle_closed=event.closed,
                                    candle_open_time=event.open_time):
                    break
            return

        price = resolve_price(alert.symbol, self._market.tickers)
        if price is None:
            kind = "composite legs" if is_composite_symbol(alert.symbol) else "ticker"
            raise DataUnavailableError(alert.id, f"no {kind} for {alert.symbol}")

        targets = drawing_targets if drawing_targets is not None else [alert.target]
        await self._feed(alert, price, targets, now, evaluation)

    def _candle_value(
        self,
        alert: AlertSpec,
        event: CandleSnapshot,
        drawing_targets: list[float] | None,
    ) -> tuple[float, list[float]]:
        """Current value and targets for a candle-based alert."""
        if alert.target_type == TargetType.INDICATOR:
            value = calculate_indicator(alert.target_value, event.closes)
            if alert.uses_threshold:
                return value, [alert.target]
            return event.close, [value]
        if drawing_targets is not None:
            return event.close, drawing_targets
        return event.close, [alert.target]

    async def _drawing_targets(
        self,
        alert: AlertSpec,
        now: int,
        drawings_cache: dict[str, dict[str, DrawingSpec]],
    ) -> list[float]:
        """Resolve a drawing alert's targets at ``now``.

        An empty list means the drawing is inactive at ``now`` (e.g. a
        zone outside its time window); the condition then cannot hold.
        """
        if self._drawing_repo is None:
            raise MalformedSpecError(alert.id, "no drawing repository configured")

        symbol = alert.symbol
        if symbol not in drawings_cache:
            drawings = await self._drawing_repo.get_drawings(symbol)
            drawings_cache[symbol] = {d.id: d for d in drawings}

        drawing = drawings_cache[symbol].get(alert.target_value)
        if drawing is None:
            raise MalformedSpecError(alert.id, f"drawing {alert.target_value} not found")

        spec = serialize_drawing(drawing)
        if spec is None:
            raise MalformedSpecError(
                alert.id, f"drawing {drawing.id} ({drawing.type.value}) has no usable geometry"
            )
        return resolve_target_list(spec, now)

    async def _feed(
        self,
        alert: AlertSpec,
        current: float,
        targets: list[float],
        now: int,
        evaluation: AlertEvaluation,
        candle_closed: bool = False,
        candle_open_time: int | None = None,
    ) -> bool:
        """Feed one observation to the state machine; trigger on fire.

        Returns:
            True if the alert fired
        """
        met = is_condition_met(alert.condition, current, targets)
        result = self._machine.evaluate(
            alert,
            met,
            now,
            candle_closed=candle_closed,
            candle_open_time=candle_open_time,
        )
        evaluation.outcome = result.outcome
        evaluation.current_value = current
        evaluation.targets = list(targets)

        if not result.fires:
            return False

        try:
            await self._trigger_handler.handle(
                alert,
                price=current,
                target=matched_target(alert.condition, current, targets),
                timestamp=now,
            )
        except Exception:
            # Trigger not recorded; the next tick decides again
            self._machine.drop(alert.id)
            raise
        evaluation.triggered = True
        return True


async def run_evaluation_loop(
    alert_repo: AlertRepository,
    drawing_repo: DrawingRepository | None = None,
    buffer: TickBuffer | None = None,
    dispatcher: SideEffectDispatcher | None = None,
    max_cycles: int = 1,
    check_interval_seconds: float = 1.0,
) -> EvaluationLoopResult:
    """Convenience function to run the evaluation loop.

    Args:
        alert_repo: Alert repository
        drawing_repo: Drawing repository
        buffer: Market data buffer
        dispatcher: Side-effect dispatcher
        max_cycles: Maximum cycles to run
        check_interval_seconds: Time between cycles

    Returns:
        EvaluationLoopResult
    """
    loop = AlertEvaluationLoop(
        alert_repo,
        drawing_repo=drawing_repo,
        buffer=buffer,
        dispatcher=dispatcher,
        check_interval_seconds=check_interval_seconds,
    )
    return await loop.start(max_cycles=max_cycles)
