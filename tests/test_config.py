"""
Tests for Configuration Validation and Logging Setup
====================================================
"""

import logging
from pathlib import Path

import pytest
import yaml

from signaldesk.config_validator import ConfigValidator, validate_config_at_startup
from signaldesk.errors import ConfigValidationError
from signaldesk.logging_config import LoggingConfig, SampledLogger


class TestConfigValidator:
    """Test schema checks."""

    def test_valid_config(self, test_config):
        result = ConfigValidator().validate(test_config)
        assert result.valid, result.format_errors_for_display()

    def test_shipped_config_is_valid(self):
        path = Path(__file__).resolve().parent.parent / "config.yaml"
        config = yaml.safe_load(path.read_text(encoding="utf-8"))
        assert validate_config_at_startup(config).valid

    def test_empty_config_is_valid(self):
        assert ConfigValidator().validate({}).valid

    def test_range_violation(self, test_config):
        test_config["dashboard"]["port"] = 70000
        result = ConfigValidator().validate(test_config)

        assert not result.valid
        assert result.get_errors()[0].path == "dashboard.port"

    def test_bool_is_not_a_number(self, test_config):
        test_config["simulator"]["interval_seconds"] = True
        result = ConfigValidator().validate(test_config)
        assert [e.path for e in result.get_errors()] == ["simulator.interval_seconds"]

    def test_allowed_values(self, test_config):
        test_config["logging"]["level"] = "LOUD"
        assert not ConfigValidator().validate(test_config).valid

    def test_empty_watchlist_rejected(self, test_config):
        test_config["watchlist"]["symbols"] = []
        assert not ConfigValidator().validate(test_config).valid

    def test_instrument_checks(self, test_config):
        test_config["simulator"]["instruments"] = [
            {"symbol": "NVDA", "initial_price": 880.0},
            {"symbol": "NVDA", "initial_price": 1.0},
            {"symbol": "BAD", "initial_price": 0},
        ]
        result = ConfigValidator().validate(test_config)
        paths = [e.path for e in result.get_errors()]

        assert "simulator.instruments[1].symbol" in paths
        assert "simulator.instruments[2].initial_price" in paths

    def test_unsimulated_watchlist_symbol_warns(self, test_config):
        test_config["simulator"]["instruments"] = [{"symbol": "NVDA", "initial_price": 880.0}]
        result = ConfigValidator().validate(test_config)

        assert result.valid
        assert any("BTC-USD" in w.message for w in result.get_warnings())

    def test_strict_raises(self, test_config):
        test_config["analysis"]["max_retries"] = 0
        with pytest.raises(ConfigValidationError) as exc:
            validate_config_at_startup(test_config)
        assert exc.value.issues

    def test_non_mapping(self):
        assert not ConfigValidator().validate(["not", "a", "dict"]).valid


class TestLoggingConfig:
    """Test logging setup."""

    @pytest.fixture
    def restore_root(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_from_dict(self):
        config = LoggingConfig.from_dict({"level": "debug", "modules": {"aiohttp": "ERROR"}})

        assert config.root_level == logging.DEBUG
        assert config.module_levels["aiohttp"] == logging.ERROR
        assert "signaldesk.price_simulator" in config.module_levels

    def test_apply_with_file(self, tmp_path, restore_root):
        log_file = tmp_path / "logs" / "signaldesk.log"
        LoggingConfig.from_dict({"level": "INFO", "file": str(log_file)}).apply()

        logging.getLogger("signaldesk.test").info("hello")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert "hello" in log_file.read_text(encoding="utf-8")

    def test_sampled_logger(self, caplog):
        logger = logging.getLogger("signaldesk.sampled")
        sampled = SampledLogger(logger, every_n=3)

        with caplog.at_level(logging.DEBUG, logger="signaldesk.sampled"):
            for i in range(7):
                sampled.debug(f"tick {i}")

        assert [r.getMessage() for r in caplog.records] == ["tick 0", "tick 3", "tick 6"]

    def test_sampled_logger_rejects_zero(self):
        with pytest.raises(ValueError):
            SampledLogger(logging.getLogger("x"), every_n=0)
