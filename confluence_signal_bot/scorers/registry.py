from __future__ import annotations

from typing import Dict, List, Optional, Type

from ..config import ScorersConfig, SCORER_NAMES
from .base import Scorer
from .breakout_retest import BreakoutRetestScorer
from .liquidity import LiquidityScorer
from .market_structure import MarketStructureScorer
from .mean_reversion import MeanReversionScorer
from .momentum import MomentumScorer
from .vwap_bias import VwapBiasScorer


SCORERS: Dict[str, Type[Scorer]] = {
    cls.name: cls
    for cls in (
        MomentumScorer,
        BreakoutRetestScorer,
        MeanReversionScorer,
        LiquidityScorer,
        MarketStructureScorer,
        VwapBiasScorer,
    )
}


def build_scorers(cfg: Optional[ScorersConfig] = None) -> List[Scorer]:
    cfg = cfg or ScorersConfig()
    names = cfg.enabled if cfg.enabled is not None else SCORER_NAMES
    out = []
    for name in names:
        if name not in SCORERS:
            raise ValueError(f"Unknown scorer: {name}")
        out.append(SCORERS[name](cfg))
    return out
