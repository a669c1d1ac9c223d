from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import os
import yaml


def _env_override(value: Any, *env_keys: str) -> Any:
    env_val = None
    for key in env_keys:
        env_val = os.getenv(key)
        if env_val is not None:
            break
    if env_val is None:
        return value
    # basic parsing
    if isinstance(value, bool):
        return env_val.strip().lower() in ("1", "true", "yes", "y", "on")
    if isinstance(value, int):
        try:
            return int(env_val)
        except ValueError:
            return value
    if isinstance(value, float):
        try:
            return float(env_val)
        except ValueError:
            return value
    return env_val


def _split_ids(raw: str) -> List[str]:
    return [x.strip() for x in raw.split(",") if x.strip()]


@dataclass
class AppConfig:
    name: str = "Scalp Signal Bot"
    log_level: str = "INFO"
    startup_message: bool = True


@dataclass
class MarketConfig:
    market: str = "spot"  # spot|futures
    symbol: str = "BTCUSDT"
    primary_tf: str = "1m"
    confirmation_tf: str = "5m"
    trend_tf: str = "1h"
    candle_limit: int = 100
    depth_limit: int = 20
    api_key: str = ""
    rest_timeout_s: int = 20
    ws_heartbeat_s: int = 20
    min_request_interval_ms: int = 50
    reconnect_backoff_s: float = 5.0


@dataclass
class ScoringConfig:
    threshold: int = 6
    trend_sma_len: int = 5
    volume_spike_threshold: float = 2.0
    buyer_pressure_ratio: float = 3.0


@dataclass
class CacheConfig:
    ttl_s: Dict[str, int] = field(default_factory=lambda: {"1h": 300, "5m": 60})

    def ttls_ms(self) -> Dict[str, int]:
        return {tf: int(s) * 1000 for tf, s in self.ttl_s.items()}


@dataclass
class RiskConfig:
    timeframe: str = "5m"
    lookback: int = 10
    take_profit_pct: float = 0.5


@dataclass
class SentimentConfig:
    api_key: str = ""
    ttl_s: int = 300
    asset_keywords: List[str] = field(default_factory=lambda: ["btc", "bitcoin"])
    timeout_s: int = 15


@dataclass
class TelegramConfig:
    enabled: bool = True
    token: str = ""
    chat_ids: List[str] = None
    disable_web_page_preview: bool = True


@dataclass
class WebhookConfig:
    enabled: bool = False
    url: str = ""
    secret: str = ""
    timeout_s: int = 10
    headers: Dict[str, str] = None


@dataclass
class AlertsConfig:
    parse_mode: str = "HTML"  # HTML | MarkdownV2
    send_neutral: bool = False
    trade_report: bool = False
    footer: str = ""


@dataclass
class Config:
    app: AppConfig = field(default_factory=AppConfig)
    market: MarketConfig = field(default_factory=MarketConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)
    sentiment: SentimentConfig = field(default_factory=SentimentConfig)
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    webhook: WebhookConfig = field(default_factory=WebhookConfig)
    alerts: AlertsConfig = field(default_factory=AlertsConfig)

    @property
    def timeframes(self) -> List[str]:
        m = self.market
        return [m.primary_tf, m.confirmation_tf, m.trend_tf]


def validate(cfg: Config) -> None:
    errs = []
    if not cfg.market.symbol:
        errs.append("market.symbol is empty")
    if len(set(cfg.timeframes)) != 3:
        errs.append(f"primary/confirmation/trend timeframes must differ: {cfg.timeframes}")
    if not 0 < cfg.scoring.threshold <= 11:
        errs.append(f"scoring.threshold must be within 1..11, got {cfg.scoring.threshold}")
    for tf in (cfg.market.confirmation_tf, cfg.market.trend_tf):
        if tf not in cfg.cache.ttl_s:
            errs.append(f"cache.ttl_s has no entry for {tf}")
    if cfg.risk.lookback <= 0:
        errs.append("risk.lookback must be positive")
    if errs:
        raise ValueError("Config violation: " + "; ".join(errs))


def from_dict(raw: Dict[str, Any]) -> Config:
    raw = raw or {}
    cfg = Config(
        app=AppConfig(**raw.get("app", {})),
        market=MarketConfig(**raw.get("market", {})),
        scoring=ScoringConfig(**raw.get("scoring", {})),
        cache=CacheConfig(**raw.get("cache", {})),
        risk=RiskConfig(**raw.get("risk", {})),
        sentiment=SentimentConfig(**raw.get("sentiment", {})),
        telegram=TelegramConfig(**raw.get("telegram", {})),
        webhook=WebhookConfig(**raw.get("webhook", {})),
        alerts=AlertsConfig(**raw.get("alerts", {})),
    )
    _apply_env(cfg)
    validate(cfg)
    return cfg


def _apply_env(cfg: Config) -> None:
    # env overrides (useful on servers)
    cfg.market.api_key = _env_override(cfg.market.api_key, "BINANCE_API_KEY")
    cfg.market.symbol = str(_env_override(cfg.market.symbol, "SYMBOL")).upper()
    cfg.sentiment.api_key = _env_override(cfg.sentiment.api_key, "CRYPTOPANIC_API_KEY")

    cfg.telegram.token = _env_override(cfg.telegram.token, "TELEGRAM_TOKEN", "TELEGRAM_BOT_TOKEN")
    if cfg.telegram.chat_ids is None:
        cfg.telegram.chat_ids = []
    # Allow TELEGRAM_CHAT_IDS="id1,id2"
    chat_env = os.getenv("TELEGRAM_CHAT_IDS") or os.getenv("TELEGRAM_CHAT_ID")
    if chat_env:
        cfg.telegram.chat_ids = _split_ids(chat_env)

    cfg.webhook.secret = _env_override(cfg.webhook.secret, "WEBHOOK_SECRET")
    cfg.webhook.url = _env_override(cfg.webhook.url, "WEBHOOK_URL")
    if cfg.webhook.headers is None:
        cfg.webhook.headers = {}


def load_config(path: Optional[str] = None) -> Config:
    raw: Dict[str, Any] = {}
    if path:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    return from_dict(raw)
