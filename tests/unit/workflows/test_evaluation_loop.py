"""Unit tests for AlertEvaluationLoop."""

import pytest

from src.adapters.data_feeds.tick_buffer import TickBuffer
from src.application.workflows.evaluation_loop import (
    AlertEvaluationLoop,
    EvaluationCycleResult,
    EvaluationLoopResult,
    EvaluationStatus,
    run_evaluation_loop,
)
from src.domain.interfaces.repositories import AlertRepository, DrawingRepository
from src.domain.models.alert import AlertHistoryRecord, AlertSpec
from src.domain.models.drawing import ChartPoint, DrawingSpec
from src.domain.models.enums import Condition, Confirmation, ConfirmationOutcome, DrawingType


class InMemoryAlertRepository(AlertRepository):
    """In-memory alert repository for testing."""

    def __init__(self, *alerts: AlertSpec):
        self.alerts: dict[str, AlertSpec] = {a.id: a for a in alerts}
        self.history: list[AlertHistoryRecord] = []

    async def get_alerts(self, symbol: str | None = None) -> list[AlertSpec]:
        return [a for a in self.alerts.values() if symbol is None or a.symbol == symbol]

    async def save_alert(self, alert: AlertSpec) -> None:
        self.alerts[alert.id] = alert

    async def remove_alert(self, alert_id: str) -> None:
        self.alerts.pop(alert_id, None)

    async def get_alert_history(self) -> list[AlertHistoryRecord]:
        return list(self.history)

    async def add_alert_history(self, record: AlertHistoryRecord) -> None:
        self.history.insert(0, record)
        del self.history[50:]

    async def clear_alert_history(self) -> None:
        self.history.clear()


class InMemoryDrawingRepository(DrawingRepository):
    """In-memory drawing repository for testing."""

    def __init__(self, *drawings: DrawingSpec):
        self.drawings = list(drawings)
        self.fail = False

    async def get_drawings(self, symbol: str) -> list[DrawingSpec]:
        if self.fail:
            raise RuntimeError("drawing store offline")
        return [d for d in self.drawings if d.symbol == symbol]


def price_alert(
    alert_id: str = "p1",
    symbol: str = "BTCUSDT",
    target: float = 100,
    condition: Condition = Condition.CROSSING_UP,
    **overrides,
) -> AlertSpec:
    """Create a test price alert."""
    return AlertSpec(id=alert_id, symbol=symbol, target=target, condition=condition, **overrides)


def make_loop(
    *alerts: AlertSpec,
    drawings: list[DrawingSpec] | None = None,
) -> tuple[AlertEvaluationLoop, InMemoryAlertRepository]:
    """Create a loop over in-memory repositories."""
    repo = InMemoryAlertRepository(*alerts)
    drawing_repo = InMemoryDrawingRepository(*(drawings or []))
    loop = AlertEvaluationLoop(
        repo,
        drawing_repo=drawing_repo,
        buffer=TickBuffer(100),
        check_interval_seconds=0,
    )
    return loop, repo


def only(result: EvaluationCycleResult):
    """The single per-alert evaluation of a cycle."""
    assert len(result.evaluations) == 1
    return result.evaluations[0]


class TestEvaluationLoopCreation:
    """Tests for loop creation."""

    def test_create_loop(self):
        loop, _ = make_loop()
        assert loop.status == EvaluationStatus.STOPPED
        assert not loop.is_running

    def test_loops_do_not_share_state(self):
        loop_a, _ = make_loop()
        loop_b, _ = make_loop()
        assert loop_a.market is not loop_b.market
        assert loop_a.state_machine is not loop_b.state_machine


class TestPriceAlerts:
    """Tests for ticker-driven alerts."""

    async def test_immediate_trigger(self):
        loop, repo = make_loop(price_alert())
        loop.buffer.put_ticker("BTCUSDT", 101)

        result = await loop.run_evaluation_cycle(now_ms=1000)

        evaluation = only(result)
        assert evaluation.triggered
        assert evaluation.outcome == ConfirmationOutcome.TRIGGERED_IMMEDIATE
        assert result.items_drained == 1
        assert repo.alerts["p1"].active is False
        assert repo.history[0].message == "BTCUSDT rose above 100. Price: 101"
        assert repo.history[0].timestamp == 1000

    async def test_triggered_alert_not_evaluated_again(self):
        loop, repo = make_loop(price_alert())
        loop.buffer.put_ticker("BTCUSDT", 101)
        await loop.run_evaluation_cycle(now_ms=1000)

        second = await loop.run_evaluation_cycle(now_ms=2000)

        assert second.alerts_checked == 0
        assert "p1" not in loop.state_machine
        assert len(repo.history) == 1

    async def test_condition_not_met(self):
        loop, repo = make_loop(price_alert())
        loop.buffer.put_ticker("BTCUSDT", 99)

        evaluation = only(await loop.run_evaluation_cycle(now_ms=1000))

        assert evaluation.outcome == ConfirmationOutcome.NO_ACTION
        assert not evaluation.triggered
        assert repo.alerts["p1"].active is True

    async def test_missing_ticker_is_skipped(self):
        loop, _ = make_loop(price_alert())

        result = await loop.run_evaluation_cycle(now_ms=1000)

        evaluation = only(result)
        assert evaluation.skipped
        assert "no ticker" in evaluation.error
        assert result.errors == []

    async def test_latest_ticker_used(self):
        loop, _ = make_loop(price_alert())
        loop.buffer.put_ticker("BTCUSDT", 101)
        loop.buffer.put_ticker("BTCUSDT", 99)

        evaluation = only(await loop.run_evaluation_cycle(now_ms=1000))

        assert evaluation.current_value == 99
        assert not evaluation.triggered

    async def test_inactive_alert_ignored(self):
        loop, _ = make_loop(price_alert(active=False))
        loop.buffer.put_ticker("BTCUSDT", 101)

        result = await loop.run_evaluation_cycle(now_ms=1000)

        assert result.alerts_checked == 0

    async def test_composite_symbol(self):
        """ETH/BTC priced from ETH spot and BTC perpetual."""
        alert = price_alert(symbol="ETH/BTC", target=0.06, condition=Condition.CROSSING_DOWN)
        loop, repo = make_loop(alert)
        loop.buffer.put_ticker("ETHUSDT", 3000)
        loop.buffer.put_ticker("BTCUSDT.P", 60000)

        evaluation = only(await loop.run_evaluation_cycle(now_ms=1000))

        assert evaluation.current_value == pytest.approx(0.05)
        assert evaluation.triggered
        assert "ETH/BTC fell below 0.06" in repo.history[0].message

    async def test_composite_missing_leg_skipped(self):
        loop, _ = make_loop(price_alert(symbol="ETH/BTC", target=0.06))
        loop.buffer.put_ticker("ETHUSDT", 3000)

        evaluation = only(await loop.run_evaluation_cycle(now_ms=1000))

        assert evaluation.skipped
        assert "composite legs" in evaluation.error


class TestTimeDelayAcrossCycles:
    """Tests for time delay confirmation over several ticks."""

    async def test_fires_after_delay(self):
        alert = price_alert(confirmation=Confirmation.TIME_DELAY, delay_seconds=10)
        loop, repo = make_loop(alert)
        loop.buffer.put_ticker("BTCUSDT", 101)

        first = only(await loop.run_evaluation_cycle(now_ms=1000))
        second = only(await loop.run_evaluation_cycle(now_ms=6000))
        third = only(await loop.run_evaluation_cycle(now_ms=12000))

        assert first.outcome == ConfirmationOutcome.TIMER_STARTED
        assert second.outcome == ConfirmationOutcome.WAITING
        assert third.outcome == ConfirmationOutcome.TRIGGERED
        assert repo.alerts["p1"].active is False

    async def test_vanished_alert_state_dropped(self):
        alert = price_alert(confirmation=Confirmation.TIME_DELAY, delay_seconds=10)
        loop, repo = make_loop(alert)
        loop.buffer.put_ticker("BTCUSDT", 101)
        await loop.run_evaluation_cycle(now_ms=1000)
        assert "p1" in loop.state_machine

        await repo.remove_alert("p1")
        result = await loop.run_evaluation_cycle(now_ms=2000)

        assert result.alerts_checked == 0
        assert "p1" not in loop.state_machine

    async def test_recreated_alert_starts_fresh(self):
        alert = price_alert(confirmation=Confirmation.TIME_DELAY, delay_seconds=10)
        loop, repo = make_loop(alert)
        loop.buffer.put_ticker("BTCUSDT", 101)
        await loop.run_evaluation_cycle(now_ms=1000)
        await repo.remove_alert("p1")
        await loop.run_evaluation_cycle(now_ms=2000)

        await repo.save_alert(alert)
        evaluation = only(await loop.run_evaluation_cycle(now_ms=12000))

        assert evaluation.outcome == ConfirmationOutcome.TIMER_STARTED


class TestCandleAlerts:
    """Tests for candle-driven alerts."""

    async def test_candle_delay_over_cycles(self):
        alert = price_alert(confirmation=Confirmation.CANDLE_DELAY, delay_candles=2, interval="1m")
        loop, repo = make_loop(alert)

        loop.buffer.put_candle("BTCUSDT", "1m", 101, open_time=0, closed=True)
        first = only(await loop.run_evaluation_cycle(now_ms=60_000))
        loop.buffer.put_candle("BTCUSDT", "1m", 102, open_time=60_000, closed=False)
        live = only(await loop.run_evaluation_cycle(now_ms=61_000))
        loop.buffer.put_candle("BTCUSDT", "1m", 103, open_time=60_000, closed=True)
        closed = only(await loop.run_evaluation_cycle(now_ms=120_000))

        assert first.outcome == ConfirmationOutcome.COUNTING
        assert live.outcome == ConfirmationOutcome.WAITING_CLOSE
        assert closed.outcome == ConfirmationOutcome.TRIGGERED
        assert repo.alerts["p1"].active is False

    async def test_closed_candle_seen_once(self):
        """A close drained in one cycle is not counted again on the next."""
        alert = price_alert(confirmation=Confirmation.CANDLE_DELAY, delay_candles=2, interval="1m")
        loop, _ = make_loop(alert)

        loop.buffer.put_candle("BTCUSDT", "1m", 101, open_time=0, closed=True)
        await loop.run_evaluation_cycle(now_ms=60_000)
        second = only(await loop.run_evaluation_cycle(now_ms=61_000))

        assert second.outcome == ConfirmationOutcome.WAITING_CLOSE
        assert loop.state_machine.get("p1").candle_delay_count == 1

    async def test_two_closes_in_one_cycle(self):
        alert = price_alert(confirmation=Confirmation.CANDLE_DELAY, delay_candles=2, interval="1m")
        loop, repo = make_loop(alert)
        loop.buffer.put_candle("BTCUSDT", "1m", 101, open_time=0, closed=True)
        loop.buffer.put_candle("BTCUSDT", "1m", 102, open_time=60_000, closed=True)

        evaluation = only(await loop.run_evaluation_cycle(now_ms=120_000))

        assert evaluation.triggered
        assert len(repo.history) == 1

    async def test_failed_close_resets(self):
        alert = price_alert(confirmation=Confirmation.CANDLE_DELAY, delay_candles=3, interval="1m")
        loop, _ = make_loop(alert)
        loop.buffer.put_candle("BTCUSDT", "1m", 101, open_time=0, closed=True)
        await loop.run_evaluation_cycle(now_ms=60_000)

        loop.buffer.put_candle("BTCUSDT", "1m", 99, open_time=60_000, closed=True)
        evaluation = only(await loop.run_evaluation_cycle(now_ms=120_000))

        assert evaluation.outcome == ConfirmationOutcome.RESET

    async def test_no_candles_skipped(self):
        alert = price_alert(confirmation=Confirmation.CANDLE_CLOSE, interval="5m")
        loop, _ = make_loop(alert)
        loop.buffer.put_ticker("BTCUSDT", 101)

        evaluation = only(await loop.run_evaluation_cycle(now_ms=1000))

        assert evaluation.skipped
        assert "5m" in evaluation.error


class TestIndicatorAlerts:
    """Tests for indicator alerts."""

    async def test_rsi_against_threshold(self, sample_closes):
        alert = AlertSpec(
            id="rsi",
            symbol="BTCUSDT",
            target_type="indicator",
            target_value="rsi5",
            target=55,
            condition=Condition.CROSSING_UP,
        )
        loop, repo = make_loop(alert)
        loop.buffer.load_history("BTCUSDT", "1m", sample_closes)

        evaluation = only(await loop.run_evaluation_cycle(now_ms=1000))

        assert evaluation.current_value == pytest.approx(60)
        assert evaluation.targets == [55]
        assert evaluation.triggered
        assert repo.history[0].target == "RSI5"
        assert repo.history[0].message == "BTCUSDT rose above RSI5. Price: 60"

    async def test_close_against_moving_average(self):
        alert = AlertSpec(
            id="sma",
            symbol="BTCUSDT",
            target_type="indicator",
            target_value="sma3",
            condition=Condition.CROSSING_UP,
        )
        loop, _ = make_loop(alert)
        loop.buffer.load_history("BTCUSDT", "1m", [10, 10, 13])

        evaluation = only(await loop.run_evaluation_cycle(now_ms=1000))

        assert evaluation.current_value == 13
        assert evaluation.targets == pytest.approx([11])
        assert evaluation.triggered

    async def test_short_history_never_fires(self):
        alert = AlertSpec(
            id="ema",
            symbol="BTCUSDT",
            target_type="indicator",
            target_value="ema25",
            condition=Condition.CROSSING_DOWN,
        )
        loop, repo = make_loop(alert)
        loop.buffer.load_history("BTCUSDT", "1m", [1.0, 2.0])

        evaluation = only(await loop.run_evaluation_cycle(now_ms=1000))

        assert not evaluation.skipped
        assert evaluation.outcome == ConfirmationOutcome.NO_ACTION
        assert repo.alerts["ema"].active is True


class TestDrawingAlerts:
    """Tests for drawing alerts."""

    async def test_trendline_resolved_at_tick_time(self, trendline_points):
        drawing = DrawingSpec(
            id="line", symbol="BTCUSDT", type=DrawingType.TRENDLINE, points=trendline_points
        )
        alert = AlertSpec(
            id="d1",
            symbol="BTCUSDT",
            target_type="drawing",
            target_value="line",
            condition=Condition.CROSSING_UP,
        )
        loop, repo = make_loop(alert, drawings=[drawing])
        loop.buffer.put_ticker("BTCUSDT", 151)

        evaluation = only(await loop.run_evaluation_cycle(now_ms=1500))

        assert evaluation.targets == pytest.approx([150])
        assert evaluation.triggered
        assert repo.history[0].target == "150"

    async def test_trendline_moves_away(self, trendline_points):
        drawing = DrawingSpec(
            id="line", symbol="BTCUSDT", type=DrawingType.TRENDLINE, points=trendline_points
        )
        alert = AlertSpec(
            id="d1",
            symbol="BTCUSDT",
            target_type="drawing",
            target_value="line",
            condition=Condition.CROSSING_UP,
        )
        loop, _ = make_loop(alert, drawings=[drawing])
        loop.buffer.put_ticker("BTCUSDT", 151)

        evaluation = only(await loop.run_evaluation_cycle(now_ms=1600))

        assert evaluation.targets == pytest.approx([160])
        assert not evaluation.triggered

    async def test_rect_outside_window_not_met(self):
        drawing = DrawingSpec(
            id="zone",
            symbol="BTCUSDT",
            type=DrawingType.RECT,
            points=[ChartPoint(time=1000, price=90), ChartPoint(time=2000, price=110)],
        )
        alert = AlertSpec(
            id="d1",
            symbol="BTCUSDT",
            target_type="drawing",
            target_value="zone",
            condition=Condition.CROSSING_UP,
        )
        loop, _ = make_loop(alert, drawings=[drawing])
        loop.buffer.put_ticker("BTCUSDT", 200)

        outside = only(await loop.run_evaluation_cycle(now_ms=5000))
        inside = only(await loop.run_evaluation_cycle(now_ms=1500))

        assert outside.targets == []
        assert not outside.triggered
        assert inside.triggered

    async def test_missing_drawing_skipped(self):
        alert = AlertSpec(
            id="d1",
            symbol="BTCUSDT",
            target_type="drawing",
            target_value="gone",
            condition=Condition.CROSSING_UP,
        )
        loop, _ = make_loop(alert)
        loop.buffer.put_ticker("BTCUSDT", 151)

        evaluation = only(await loop.run_evaluation_cycle(now_ms=1500))

        assert evaluation.skipped
        assert "not found" in evaluation.error

    async def test_vertical_drawing_skipped(self):
        drawing = DrawingSpec(
            id="line",
            symbol="BTCUSDT",
            type=DrawingType.TRENDLINE,
            points=[ChartPoint(time=1000, price=100), ChartPoint(time=1000, price=200)],
        )
        alert = AlertSpec(
            id="d1",
            symbol="BTCUSDT",
            target_type="drawing",
            target_value="line",
            condition=Condition.CROSSING_UP,
        )
        loop, _ = make_loop(alert, drawings=[drawing])
        loop.buffer.put_ticker("BTCUSDT", 151)

        evaluation = only(await loop.run_evaluation_cycle(now_ms=1500))

        assert evaluation.skipped
        assert "no usable geometry" in evaluation.error


class TestErrorIsolation:
    """Tests that one failing alert does not affect others."""

    async def test_repository_error_recorded(self, trendline_points):
        drawing_alert = AlertSpec(
            id="d1",
            symbol="BTCUSDT",
            target_type="drawing",
            target_value="line",
            condition=Condition.CROSSING_UP,
        )
        loop, repo = make_loop(drawing_alert, price_alert(alert_id="p1"))
        loop._drawing_repo.fail = True
        loop.buffer.put_ticker("BTCUSDT", 151)

        result = await loop.run_evaluation_cycle(now_ms=1500)

        assert len(result.errors) == 1
        assert "d1" in result.errors[0]
        assert repo.alerts["p1"].active is False

    async def test_failed_persist_retried_next_cycle(self):
        """A fire whose save fails is decided again instead of being lost."""
        loop, repo = make_loop(price_alert())
        save = repo.save_alert
        failures = []

        async def flaky_save(alert):
            if not failures:
                failures.append(alert.id)
                raise RuntimeError("db blip")
            await save(alert)

        repo.save_alert = flaky_save
        loop.buffer.put_ticker("BTCUSDT", 150)

        first = await loop.run_evaluation_cycle(now_ms=1000)
        second = await loop.run_evaluation_cycle(now_ms=2000)

        assert "db blip" in first.errors[0]
        assert not only(first).triggered
        assert loop.state_machine.get("p1") is None
        assert only(second).outcome == ConfirmationOutcome.TRIGGERED_IMMEDIATE
        assert only(second).triggered
        assert repo.alerts["p1"].active is False
        assert len(repo.history) == 1

    async def test_alert_load_failure_recorded(self):
        loop, repo = make_loop(price_alert())

        async def broken(symbol=None):
            raise RuntimeError("db down")

        repo.get_alerts = broken
        result = await loop.run_evaluation_cycle(now_ms=1000)

        assert result.alerts_checked == 0
        assert "db down" in result.errors[0]


class TestSubscriptions:
    """Tests for market data subscriptions."""

    async def test_subscriptions_follow_alerts(self):
        loop, _ = make_loop(
            price_alert(alert_id="a", symbol="SOLUSDT"),
            price_alert(alert_id="b", symbol="ETH/BTC", target=0.05),
            price_alert(alert_id="c", confirmation=Confirmation.CANDLE_CLOSE, interval="15m"),
            AlertSpec(
                id="d",
                symbol="ETHUSDT",
                target_type="indicator",
                target_value="sma7",
                condition=Condition.CROSSING_UP,
            ),
        )
        await loop.run_evaluation_cycle(now_ms=1000)

        tickers, candles = loop.subscriptions()

        assert tickers == {"SOLUSDT", "ETHUSDT", "ETHUSDT.P", "BTCUSDT", "BTCUSDT.P"}
        assert candles == {("BTCUSDT", "15m"), ("ETHUSDT", "1m")}

    async def test_inactive_alerts_not_subscribed(self):
        loop, _ = make_loop(
            price_alert(alert_id="a", symbol="SOLUSDT", active=False),
            AlertSpec(
                id="b",
                symbol="ETHUSDT",
                target_type="indicator",
                target_value="sma7",
                condition=Condition.CROSSING_UP,
                active=False,
            ),
        )
        loop.buffer.load_history("ETHUSDT", "1m", [float(i) for i in range(100)])

        await loop.run_evaluation_cycle(now_ms=1000)

        assert loop.subscriptions() == (set(), set())
        assert loop.market.histories == {}

    async def test_unused_history_dropped(self):
        loop, _ = make_loop(price_alert())
        loop.buffer.load_history("DOGEUSDT", "1m", [1.0, 2.0])

        await loop.run_evaluation_cycle(now_ms=1000)

        assert loop.market.histories == {}


class TestLoopLifecycle:
    """Tests for start/stop/pause."""

    async def test_runs_max_cycles(self):
        loop, _ = make_loop(price_alert())
        loop.buffer.put_ticker("BTCUSDT", 99)
        seen = []

        result = await loop.start(max_cycles=3, on_cycle_complete=seen.append)

        assert isinstance(result, EvaluationLoopResult)
        assert result.cycles_completed == 3
        assert [c.cycle_number for c in seen] == [1, 2, 3]
        assert result.status == EvaluationStatus.STOPPED

    async def test_stop_from_callback(self):
        loop, _ = make_loop()

        result = await loop.start(on_cycle_complete=lambda _: loop.stop())

        assert result.cycles_completed == 1

    def test_pause_resume(self):
        loop, _ = make_loop()
        loop.pause()
        assert loop.status == EvaluationStatus.STOPPED

        loop._status = EvaluationStatus.RUNNING
        loop.pause()
        assert loop.status == EvaluationStatus.PAUSED
        loop.resume()
        assert loop.status == EvaluationStatus.RUNNING

    async def test_run_evaluation_loop(self):
        repo = InMemoryAlertRepository(price_alert())
        buffer = TickBuffer()
        buffer.put_ticker("BTCUSDT", 150)

        result = await run_evaluation_loop(repo, buffer=buffer, max_cycles=1, check_interval_seconds=0)

        assert result.total_triggered == 1
        assert repo.alerts["p1"].active is False
