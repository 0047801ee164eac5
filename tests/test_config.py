"""Tests for YAML + environment configuration and the CLI entry points."""

from decimal import Decimal
from pathlib import Path

import pytest

from tradeledger.cli import migrate, retention
from tradeledger.config import build_config, load_config
from tradeledger.core.errors import ValidationError
from tradeledger.data.storage.factory import open_database
from tradeledger.data.storage.sqlite.storage import SQLiteDatabase

REPO_CONFIG = Path(__file__).resolve().parents[1] / "config" / "ledger.yaml"


@pytest.fixture
def no_env_file(tmp_path) -> str:
    return str(tmp_path / "absent.env")


@pytest.fixture
def env(monkeypatch, tmp_path):
    for name in ("REDIS_URL", "LEDGER_LOG_LEVEL", "TELEGRAM_BOT_TOKEN", "TELEGRAM_CHAT_ID", "LEDGER_CONFIG"):
        monkeypatch.delenv(name, raising=False)
    dsn = f"sqlite:///{tmp_path / 'cfg.db'}"
    monkeypatch.setenv("LEDGER_DB_DSN", dsn)
    return dsn


class TestBuildConfig:
    def test_repo_config_loads(self, env, no_env_file):
        cfg = load_config(REPO_CONFIG, env_file=no_env_file)

        assert cfg.storage.dsn == env
        assert cfg.rates.defaults.buy_multiplier == Decimal("1.10")
        assert cfg.rates.defaults.sell_multiplier == Decimal("0.90")
        assert cfg.rates.units_per_asset == 100_000_000
        assert cfg.scheduler.claim_lock_sec == 60
        assert cfg.cache.redis_url is None
        assert cfg.cache.ttls.chart("7d") == 21_600
        assert cfg.retention.policy.charts_keep == 2
        assert not cfg.notification.telegram_enabled
        assert "limit_executed" in cfg.notification.telegram_actions

    def test_defaults_for_empty_yaml(self, env, no_env_file):
        cfg = build_config({}, env_file=no_env_file)
        assert cfg.rates.defaults.buy_multiplier == Decimal("1.0")
        assert cfg.scheduler.max_wait_sec == 3600
        assert cfg.log_level == "INFO"

    def test_env_overrides(self, env, no_env_file, monkeypatch):
        monkeypatch.setenv("REDIS_URL", "redis://cache:6379/1")
        monkeypatch.setenv("LEDGER_LOG_LEVEL", "debug")
        monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "t")
        monkeypatch.setenv("TELEGRAM_CHAT_ID", "c")

        cfg = build_config({"log_level": "WARNING"}, env_file=no_env_file)

        assert cfg.cache.redis_url == "redis://cache:6379/1"
        assert cfg.log_level == "DEBUG"
        assert cfg.notification.telegram_enabled

    def test_dsn_required(self, env, no_env_file, monkeypatch):
        monkeypatch.delenv("LEDGER_DB_DSN")
        with pytest.raises(SystemExit):
            build_config({}, env_file=no_env_file)

    def test_invalid_multiplier_rejected(self, env, no_env_file):
        with pytest.raises(ValidationError):
            build_config({"rates": {"buy_multiplier": "-1"}}, env_file=no_env_file)

    def test_bad_section(self, env, no_env_file):
        with pytest.raises(SystemExit):
            build_config({"scheduler": ["not", "a", "mapping"]}, env_file=no_env_file)

    def test_missing_file(self, env, tmp_path):
        with pytest.raises(SystemExit):
            load_config(tmp_path / "nope.yaml")


class TestCli:
    def test_open_database_sqlite(self, tmp_path):
        db = open_database(f"sqlite:///{tmp_path / 'x.db'}")
        assert isinstance(db, SQLiteDatabase)

    def test_migrate_then_retention(self, env, monkeypatch, capsys):
        migrate.main()
        assert "schema applied (sqlite)" in capsys.readouterr().out

        monkeypatch.setenv("LEDGER_CONFIG", str(REPO_CONFIG))
        retention.main(["--dry-run"])
        out = capsys.readouterr().out
        assert "DRY-RUN" in out and "'price_ticks': 0" in out
