from pathlib import Path

import pytest

from scalp_signal_bot.config import from_dict, load_config


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for key in (
        "BINANCE_API_KEY",
        "BINANCE_API_SECRET",
        "SYMBOL",
        "CRYPTOPANIC_API_KEY",
        "TELEGRAM_TOKEN",
        "TELEGRAM_BOT_TOKEN",
        "TELEGRAM_CHAT_IDS",
        "TELEGRAM_CHAT_ID",
        "WEBHOOK_URL",
        "WEBHOOK_SECRET",
    ):
        monkeypatch.delenv(key, raising=False)


def test_defaults():
    cfg = load_config(None)
    assert cfg.market.symbol == "BTCUSDT"
    assert cfg.timeframes == ["1m", "5m", "1h"]
    assert cfg.scoring.threshold == 6
    assert cfg.cache.ttls_ms() == {"1h": 300_000, "5m": 60_000}
    assert cfg.market.min_request_interval_ms == 50
    assert cfg.market.reconnect_backoff_s == 5.0
    assert cfg.risk.timeframe == "5m"
    assert cfg.risk.lookback == 10
    assert cfg.sentiment.ttl_s == 300
    assert cfg.telegram.chat_ids == []
    assert cfg.webhook.headers == {}
    assert cfg.alerts.send_neutral is False


def test_yaml_file(tmp_path):
    p = tmp_path / "cfg.yaml"
    p.write_text(
        "market:\n"
        "  symbol: ethusdt\n"
        "  market: futures\n"
        "scoring:\n"
        "  threshold: 7\n"
        "cache:\n"
        "  ttl_s:\n"
        "    1h: 600\n"
        "    5m: 30\n"
        "alerts:\n"
        "  send_neutral: true\n",
        encoding="utf-8",
    )
    cfg = load_config(str(p))
    assert cfg.market.symbol == "ETHUSDT"
    assert cfg.market.market == "futures"
    assert cfg.scoring.threshold == 7
    assert cfg.cache.ttls_ms() == {"1h": 600_000, "5m": 30_000}
    assert cfg.alerts.send_neutral is True


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "tok")
    monkeypatch.setenv("TELEGRAM_CHAT_ID", "111, 222")
    monkeypatch.setenv("CRYPTOPANIC_API_KEY", "cp")
    monkeypatch.setenv("BINANCE_API_KEY", "bk")
    cfg = load_config(None)
    assert cfg.telegram.token == "tok"
    assert cfg.telegram.chat_ids == ["111", "222"]
    assert cfg.sentiment.api_key == "cp"
    assert cfg.market.api_key == "bk"


def test_validation_errors():
    with pytest.raises(ValueError, match="threshold"):
        from_dict({"scoring": {"threshold": 12}})
    with pytest.raises(ValueError, match="must differ"):
        from_dict({"market": {"confirmation_tf": "1m"}})
    with pytest.raises(ValueError, match="ttl_s"):
        from_dict({"cache": {"ttl_s": {"1h": 300}}})


def test_unknown_key_is_rejected():
    with pytest.raises(TypeError):
        from_dict({"scoring": {"weights": 1}})


def test_example_config_loads():
    cfg = load_config(str(Path(__file__).resolve().parents[1] / "config.example.yaml"))
    assert cfg.market.symbol == "BTCUSDT"
    assert cfg.alerts.parse_mode == "HTML"
    assert cfg.sentiment.asset_keywords == ["btc", "bitcoin"]


def test_market_has_no_secret_field():
    with pytest.raises(TypeError):
        from_dict({"market": {"api_secret": "x"}})
