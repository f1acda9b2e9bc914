from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence, Tuple

from .config import Config
from .confluence import ConfluenceAggregator
from .models import CandleBundle, PivotSet, Signal, VetoKind, WiringError
from .scorers.base import Scorer
from .scorers.registry import build_scorers

log = logging.getLogger("engine")


class SignalEngine:
    """Runs every enabled scorer over one bundle, then the aggregator. One Signal per symbol."""

    def __init__(
        self,
        cfg: Optional[Config] = None,
        scorers: Optional[Sequence[Scorer]] = None,
        aggregator: Optional[ConfluenceAggregator] = None,
    ):
        self.cfg = cfg or Config()
        self.scorers = list(scorers) if scorers is not None else build_scorers(self.cfg.scorers)
        self.aggregator = aggregator or ConfluenceAggregator(self.cfg.aggregator)

    def score_all(self, bundle: CandleBundle, pivots: PivotSet) -> List[Signal]:
        return [s.score(bundle, pivots) for s in self.scorers]

    def evaluate(self, bundle: CandleBundle, pivots: PivotSet) -> Signal:
        symbol = getattr(bundle, "symbol", None) or "UNKNOWN"
        try:
            signals = self.score_all(bundle, pivots)
        except WiringError:
            raise
        except Exception as e:
            log.exception("evaluate_failed symbol=%s err=%s", symbol, e)
            return Signal.flat(symbol, f"VETO: Evaluation error: {e}", veto=VetoKind.EVALUATION_ERROR)

        try:
            final = self.aggregator.aggregate_symbol(symbol, signals)
        except Exception as e:
            log.exception("aggregate_failed symbol=%s err=%s", symbol, e)
            return Signal.flat(symbol, f"VETO: Aggregation error: {e}", veto=VetoKind.AGGREGATION_ERROR)

        log.debug(
            "decision symbol=%s side=%s conf=%.2f type=%s regime=%s scorers=%d",
            symbol, final.direction, final.confidence, final.signal_type, final.regime, len(signals),
        )
        return final

    def evaluate_batch(self, items: Iterable[Tuple[CandleBundle, PivotSet]]) -> List[Signal]:
        return [self.evaluate(bundle, pivots) for bundle, pivots in items]
