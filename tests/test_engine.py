import asyncio
import json
import random

import pytest

from confluence_signal_bot.combiner import combine_timeframes
from confluence_signal_bot.config import Config, load_config
from confluence_signal_bot.confluence import ConfluenceAggregator, classify_regime
from confluence_signal_bot.engine import SignalEngine
from confluence_signal_bot.main import main
from confluence_signal_bot.models import BUY, DIRECTIONS, FLAT, CandleBundle, PivotSet, WiringError
from confluence_signal_bot.runner import DecisionRunner, items_from_payload
from confluence_signal_bot.scorers.base import Scorer
from confluence_signal_bot.scorers.momentum import MomentumScorer

from builders import T_0800, bundle, series


class _Fixed(Scorer):
    name = "fixed"
    signal_type = "momentum"

    def _evaluate(self, b, pivots, snapshot):
        if b.symbol == "BAD":
            raise RuntimeError("scorer blew up")
        return self.emit(b, pivots, snapshot, direction=BUY, confidence=0.6, price=b.data_15m[0].close, reason="fixed", sl_pips=20, tp_pips=30)


def _random_walk(rng, n, start=100.0, step=0.5):
    closes = [start]
    for _ in range(n - 1):
        closes.append(max(1.0, closes[-1] + rng.uniform(-step, step)))
    return closes


def test_regime_up_for_ascending_daily_and_calm_atr():
    b = bundle(ndaily=250, hist_atr_4h=[10.0] * 30)
    snap = MomentumScorer().regime_snapshot(b)
    assert snap["daily_price_above_ema_200"] is True
    assert snap["atr_4h_norm"] <= 0.7
    assert classify_regime(snap["daily_price_above_ema_200"], snap["atr_4h_norm"]) == ("Up", "Low")


def test_batch_isolates_failing_symbol():
    engine = SignalEngine(scorers=[_Fixed()])
    good = bundle("EURUSD", ndaily=250, hist_atr_4h=[10.0] * 30)
    bad = bundle("BAD", ndaily=250, hist_atr_4h=[10.0] * 30)
    out = engine.evaluate_batch([(good, PivotSet()), (bad, PivotSet()), (good, PivotSet())])
    assert [s.symbol for s in out] == ["EURUSD", "BAD", "EURUSD"]
    assert out[0].direction == BUY
    assert out[1].direction == FLAT
    assert out[1].veto == "evaluation_error"
    assert "scorer blew up" in out[1].reason
    assert out[2].to_dict() == out[0].to_dict()


def test_wiring_errors_are_not_swallowed():
    engine = SignalEngine()
    with pytest.raises(WiringError):
        engine.evaluate({"symbol": "EURUSD"}, PivotSet())


def test_every_final_signal_is_well_formed():
    rng = random.Random(42)
    engine = SignalEngine()
    items = []
    for i in range(6):
        b = CandleBundle(
            symbol=f"SYM{i}",
            data_5m=series(_random_walk(rng, 60), step=300, volume=5.0),
            data_15m=series(_random_walk(rng, 80), volume=5.0),
            data_1h=series(_random_walk(rng, 80), step=3600, volume=5.0),
            data_4h=series(_random_walk(rng, 120), step=14400),
            data_daily=series(_random_walk(rng, 260), step=86400),
            hist_atr_4h=tuple(rng.uniform(0.5, 2.0) for _ in range(90)),
            meta={"symbol": f"SYM{i}", "pip_size": 0.01},
        )
        piv = PivotSet(p=100.0, r1=101.0, r2=102.0, s1=99.0, s2=98.0, pdh=100.5, pdl=99.5)
        items.append((b, piv))

    for sig in engine.evaluate_batch(items):
        assert sig.direction in DIRECTIONS
        assert 0.0 <= sig.confidence <= 1.0
        if sig.direction == FLAT:
            assert sig.confidence == 0.0
        assert sig.reason


def test_load_config_with_overrides(tmp_path, monkeypatch):
    p = tmp_path / "cfg.yaml"
    p.write_text(
        "app:\n  log_level: DEBUG\n"
        "scorers:\n  enabled: [momentum, vwap_bias]\n  breakout:\n    confidence: 0.9\n"
        "aggregator:\n  volatility_threshold: 0.8\n"
        "telegram:\n  token: abc\n",
        encoding="utf-8",
    )
    monkeypatch.delenv("TELEGRAM_TOKEN", raising=False)
    monkeypatch.setenv("TELEGRAM_CHAT_IDS", "1, 2")
    monkeypatch.setenv("WEBHOOK_URL", "http://example.invalid/hook")
    monkeypatch.setenv("WEBHOOK_SECRET", " s3cret ")
    cfg = load_config(str(p))
    assert cfg.app.log_level == "DEBUG"
    assert cfg.scorers.enabled == ["momentum", "vwap_bias"]
    assert cfg.scorers.breakout.confidence == 0.9
    assert cfg.scorers.momentum.min_sl_pips == 20
    assert cfg.aggregator.volatility_threshold == 0.8
    assert cfg.telegram.chat_ids == ["1", "2"]
    assert cfg.webhook.url == "http://example.invalid/hook"
    assert cfg.webhook.secret == "s3cret"
    assert cfg.telegram.token == "abc"
    assert len(SignalEngine(cfg).scorers) == 2


def test_load_config_rejects_unknown_keys(tmp_path):
    p = tmp_path / "cfg.yaml"
    p.write_text("scorers:\n  momentum:\n    no_such_threshold: 1\n", encoding="utf-8")
    with pytest.raises(TypeError):
        load_config(str(p))


def _payload(symbol, interval, closes, step, pip_size=None):
    meta = {"symbol": symbol, "interval": interval}
    if pip_size is not None:
        meta["pip_size"] = pip_size
    values = [
        {"datetime": (1_700_000_000 + (len(closes) - 1 - i) * step), "open": str(c), "high": str(c + 0.5), "low": str(c - 0.5), "close": str(c)}
        for i, c in enumerate(closes)
    ]
    return {"meta": meta, "values": list(reversed(values))}


def test_combiner_builds_bundle():
    frames = [
        _payload("USDJPY", "5min", [150.0] * 10, 300),
        _payload("USDJPY", "15min", [150.0] * 20, 900),
        _payload("USDJPY", "1h", [150.0] * 20, 3600),
        _payload("USDJPY", "4h", [150.0] * 200, 14400),
        None,
    ]
    b = combine_timeframes(frames)
    assert b.symbol == "USDJPY"
    assert b.meta["pip_size"] == 0.01
    assert len(b.data_15m) == 20
    assert b.data_daily == ()
    assert b.data_15m[0].typical == pytest.approx(150.0)
    assert len(b.hist_atr_4h) == 90
    assert b.hist_atr_4h[-1] == pytest.approx(1.0)


def test_combiner_needs_five_inputs():
    with pytest.raises(WiringError):
        combine_timeframes([_payload("EURUSD", "15min", [1.1] * 5, 900)] * 4)


class _Hook:
    def __init__(self):
        self.sent = []

    def active(self):
        return True

    async def send_signal(self, sig):
        self.sent.append(sig)
        return True


class _Tg:
    parse_mode = "HTML"

    def __init__(self):
        self.sent = []

    def enabled(self):
        return True

    async def send(self, text):
        self.sent.append(text)


def test_runner_dispatches_decisions():
    hook, tg = _Hook(), _Tg()
    engine = SignalEngine(scorers=[_Fixed()])
    runner = DecisionRunner(Config(), engine=engine, webhook=hook, tg=tg)
    items = [
        (bundle("EURUSD", ndaily=250, hist_atr_4h=[10.0] * 30), PivotSet()),
        (bundle("GBPUSD"), PivotSet()),  # no regime data -> flat
    ]
    out = asyncio.run(runner.run_once(items))
    assert [s.direction for s in out] == [BUY, FLAT]
    assert len(hook.sent) == 2
    assert len(tg.sent) == 1
    assert "EURUSD" in tg.sent[0]


def test_items_from_payload_shapes():
    raw = {"items": [{"bundle": {"symbol": "EURUSD", "data_15m": []}, "pivots": {"pivots": {"R1": "1.2"}, "pdh": 1.1}}]}
    items = items_from_payload(raw)
    b, piv = items[0]
    assert b.symbol == "EURUSD"
    assert piv.r1 == 1.2
    assert piv.pdh == 1.1
    with pytest.raises(WiringError):
        items_from_payload({"items": [{"pivots": {}}]})


def _raw_candles(n, price=1.1):
    return [
        {"time": T_0800 - i * 900, "open": price, "high": price + 0.001, "low": price - 0.001, "close": price}
        for i in range(n)
    ]


def test_bad_candle_only_costs_its_own_symbol():
    broken = _raw_candles(3)
    broken[1]["open"] = "n/a"
    raw = [
        {"bundle": {"symbol": "EURUSD", "data_15m": _raw_candles(3)}, "pivots": {"pdh": 1.2}},
        {"bundle": {"symbol": "GBPUSD", "data_15m": broken, "hist_atr_4h": [0.1, "x"]}, "pivots": {"pdh": "n/a"}},
    ]
    items = items_from_payload(raw)
    assert [b.symbol for b, _ in items] == ["EURUSD", "GBPUSD"]
    assert len(items[0][0].data_15m) == 3
    assert len(items[1][0].data_15m) == 2
    assert items[1][0].hist_atr_4h == (0.1,)
    assert items[1][1].pdh is None

    out = SignalEngine().evaluate_batch(items)
    assert [s.symbol for s in out] == ["EURUSD", "GBPUSD"]


def test_aggregator_fault_is_reported_as_aggregation_error():
    class Boom(ConfluenceAggregator):
        def aggregate_symbol(self, symbol, signals):
            if symbol == "BAD":
                raise RuntimeError("kaboom")
            return super().aggregate_symbol(symbol, signals)

    engine = SignalEngine(scorers=[_Fixed()], aggregator=Boom())
    good = bundle("EURUSD", ndaily=250, hist_atr_4h=[10.0] * 30)
    bad = bundle("BAD", ndaily=250, hist_atr_4h=[10.0] * 30)
    out = engine.evaluate_batch([(bad, PivotSet()), (good, PivotSet())])
    assert out[0].direction == FLAT
    assert out[0].veto == "aggregation_error"
    assert "kaboom" in out[0].reason
    assert out[1].direction == BUY


def test_cli_writes_decisions(tmp_path):
    cfg = tmp_path / "cfg.yaml"
    cfg.write_text("telegram:\n  enabled: false\n", encoding="utf-8")
    inp = tmp_path / "batch.json"
    inp.write_text(json.dumps([{"bundle": {"symbol": "EURUSD"}, "pivots": {}}]), encoding="utf-8")
    out = tmp_path / "out.json"
    assert main(["--config", str(cfg), "--input", str(inp), "--output", str(out)]) == 0
    decisions = json.loads(out.read_text(encoding="utf-8"))
    assert decisions[0]["symbol"] == "EURUSD"
    assert decisions[0]["direction"] == FLAT
    assert decisions[0]["confidence"] == 0.0
