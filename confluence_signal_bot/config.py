from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import os
import yaml


SCORER_NAMES = ["momentum", "breakout_retest", "mean_reversion", "liquidity", "market_structure", "vwap_bias"]


def _env_override(value: str, env_key: str) -> str:
    env_val = os.getenv(env_key)
    if env_val is None or not env_val.strip():
        return value
    return env_val.strip()


@dataclass
class AppConfig:
    name: str = "Confluence Signal Bot"
    log_level: str = "INFO"


@dataclass
class MomentumConfig:
    min_4h: int = 55
    min_15m: int = 30
    min_1h: int = 30
    ema_htf_period: int = 50
    ema_ltf_period: int = 21

    # 4h bias
    bias_rsi_long: float = 52.0
    bias_rsi_short: float = 48.0

    # 15m entries
    momentum_rsi_buy: float = 55.0
    momentum_rsi_sell: float = 45.0
    reversion_rsi_buy: float = 35.0
    reversion_rsi_sell: float = 65.0
    shallow_rsi_buy: float = 40.0
    shallow_rsi_sell: float = 60.0

    # confidence
    base_confidence: float = 0.50
    shallow_base_confidence: float = 0.60
    momentum_bonus: float = 0.15
    htf_rsi_strong_long: float = 60.0
    htf_rsi_strong_short: float = 40.0
    htf_strong_bonus: float = 0.15
    ltf_rsi_strong_buy: float = 65.0
    ltf_rsi_strong_sell: float = 35.0
    ltf_strong_bonus: float = 0.10
    reversion_htf_bonus: float = 0.10
    reversion_extreme_buy: float = 25.0
    reversion_extreme_sell: float = 75.0
    reversion_extreme_bonus: float = 0.20
    shallow_htf_bonus: float = 0.15

    sl_atr_mult: float = 1.5
    min_sl_pips: int = 20


@dataclass
class BreakoutConfig:
    min_4h: int = 55
    min_15m: int = 30
    min_1h: int = 30
    ema_htf_period: int = 50
    rsi_buy: float = 55.0
    rsi_sell: float = 45.0
    confidence: float = 0.85
    min_sl_pips: int = 20
    # inclusive UTC hour windows (London open, NY open)
    sessions: List[List[int]] = field(default_factory=lambda: [[7, 10], [12, 15]])


@dataclass
class MeanReversionConfig:
    min_4h: int = 50
    min_15m: int = 50
    min_1h: int = 30
    adx_period: int = 14
    adx_trend_threshold: float = 25.0
    bb_period: int = 20
    bb_std_dev: float = 2.0
    stoch_rsi_period: int = 14
    stoch_period: int = 14
    stoch_k_smooth: int = 3
    stoch_d_smooth: int = 3
    oversold: float = 20.0
    overbought: float = 80.0
    base_confidence: float = 0.30
    ranging_bonus: float = 0.40
    pullback_bonus: float = 0.30
    sr_bonus_major: float = 0.30
    sr_bonus_minor: float = 0.15
    sl_atr_mult: float = 1.5
    min_sl_pips: int = 20


@dataclass
class LiquidityConfig:
    min_1h: int = 50
    min_4h: int = 50
    min_15m: int = 30
    min_daily: int = 200
    max_distance_atr_mult: float = 1.0
    sl_buffer_atr_mult: float = 0.25
    confidence: float = 0.60
    reward_multiple: float = 2.0


@dataclass
class StructureConfig:
    min_1h: int = 50
    min_4h: int = 50
    min_15m: int = 30
    min_daily: int = 200
    rsi_buy: float = 55.0
    rsi_sell: float = 45.0
    bos_confidence: float = 0.70
    choch_confidence: float = 0.65
    sl_atr_mult: float = 2.0
    min_sl_pips: int = 15
    reward_multiple: float = 1.5


@dataclass
class VwapConfig:
    min_1h: int = 24
    min_15m: int = 30
    min_4h: int = 50
    min_daily: int = 200
    zone_atr_mult: float = 0.25
    confidence: float = 0.65
    sl_atr_mult: float = 1.5
    min_sl_pips: int = 15
    reward_multiple: float = 1.8


@dataclass
class ScorersConfig:
    enabled: Optional[List[str]] = None  # None -> all
    volatility_spike_mult: float = 3.0
    sr_zone_atr_mult: float = 0.25
    confidence_floor: float = 0.10
    rsi_period: int = 14
    atr_period: int = 14
    sr_penalty: float = 0.30
    sr_bonus: float = 0.20
    default_rr: float = 1.5
    atr_norm_min_history: int = 20
    regime_ema_period: int = 200

    momentum: MomentumConfig = field(default_factory=MomentumConfig)
    breakout: BreakoutConfig = field(default_factory=BreakoutConfig)
    mean_reversion: MeanReversionConfig = field(default_factory=MeanReversionConfig)
    liquidity: LiquidityConfig = field(default_factory=LiquidityConfig)
    structure: StructureConfig = field(default_factory=StructureConfig)
    vwap: VwapConfig = field(default_factory=VwapConfig)


@dataclass
class AggregatorConfig:
    volatility_threshold: float = 0.7
    technical_types: List[str] = field(default_factory=lambda: ["momentum", "reversion", "breakout"])
    dynamic_types: List[str] = field(default_factory=lambda: ["vwap_bias", "liquidity", "market_structure"])
    reversion_type: str = "reversion"


@dataclass
class TelegramConfig:
    enabled: bool = True
    token: str = ""
    chat_ids: List[str] = None
    parse_mode: str = "HTML"
    disable_web_page_preview: bool = True


@dataclass
class WebhookConfig:
    enabled: bool = False
    url: str = ""
    secret: str = ""
    timeout_s: int = 10
    headers: Dict[str, str] = None


@dataclass
class Config:
    app: AppConfig = field(default_factory=AppConfig)
    scorers: ScorersConfig = field(default_factory=ScorersConfig)
    aggregator: AggregatorConfig = field(default_factory=AggregatorConfig)
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    webhook: WebhookConfig = field(default_factory=WebhookConfig)


_SCORER_SECTIONS = {
    "momentum": MomentumConfig,
    "breakout": BreakoutConfig,
    "mean_reversion": MeanReversionConfig,
    "liquidity": LiquidityConfig,
    "structure": StructureConfig,
    "vwap": VwapConfig,
}


def _scorers_config(raw: Dict[str, Any]) -> ScorersConfig:
    raw = dict(raw or {})
    nested = {key: cls(**(raw.pop(key, None) or {})) for key, cls in _SCORER_SECTIONS.items()}
    sc = ScorersConfig(**raw, **nested)
    if sc.enabled is None:
        sc.enabled = list(SCORER_NAMES)
    unknown = [n for n in sc.enabled if n not in SCORER_NAMES]
    if unknown:
        raise ValueError(f"Unknown scorers in scorers.enabled: {unknown}")
    return sc


def config_from_dict(raw: Dict[str, Any]) -> Config:
    raw = raw or {}
    cfg = Config(
        app=AppConfig(**(raw.get("app") or {})),
        scorers=_scorers_config(raw.get("scorers") or {}),
        aggregator=AggregatorConfig(**(raw.get("aggregator") or {})),
        telegram=TelegramConfig(**(raw.get("telegram") or {})),
        webhook=WebhookConfig(**(raw.get("webhook") or {})),
    )

    # env overrides (useful on servers)
    cfg.telegram.token = _env_override(cfg.telegram.token, "TELEGRAM_TOKEN")
    if cfg.telegram.chat_ids is None:
        cfg.telegram.chat_ids = []

    # Allow TELEGRAM_CHAT_IDS="id1,id2"
    chat_env = os.getenv("TELEGRAM_CHAT_IDS")
    if chat_env:
        cfg.telegram.chat_ids = [x.strip() for x in chat_env.split(",") if x.strip()]

    cfg.webhook.secret = _env_override(cfg.webhook.secret, "WEBHOOK_SECRET")
    cfg.webhook.url = _env_override(cfg.webhook.url, "WEBHOOK_URL")
    if cfg.webhook.headers is None:
        cfg.webhook.headers = {}

    return cfg


def load_config(path: str) -> Config:
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Config root must be a mapping: {path}")
    return config_from_dict(raw)
