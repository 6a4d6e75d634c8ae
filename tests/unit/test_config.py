from decimal import Decimal

from orderdesk.config import Settings


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("WALLET_SECRET", "from-env")
    monkeypatch.setenv("WALLET_STORE", "redis")
    monkeypatch.setenv("ORDER_TTL_SECONDS", "120")
    monkeypatch.setenv("TRIGGER_MIN_NOTIONAL_USD", "7.5")

    cfg = Settings()

    assert cfg.WALLET_SECRET == "from-env"
    assert cfg.WALLET_STORE == "redis"
    assert cfg.ORDER_TTL_SECONDS == 120
    assert cfg.TRIGGER_MIN_NOTIONAL_USD == Decimal("7.5")


def test_settings_defaults(monkeypatch):
    for name in ("WALLET_STORE", "WATCH_POLL_INTERVAL_SECONDS", "RECURRING_MIN_ORDERS"):
        monkeypatch.delenv(name, raising=False)

    cfg = Settings(_env_file=None)

    assert cfg.WALLET_STORE == "memory"
    assert cfg.WATCH_POLL_INTERVAL_SECONDS == 2.0
    assert cfg.RECURRING_MIN_ORDERS == 2
    assert cfg.JUP_BASE_URL == "https://api.jup.ag"
