"""
Unit tests for configuration access and the exception hierarchy.
"""

import pytest

from presence.core.config.config import Config, Environment
from presence.core.config.config_manager import ConfigManager
from presence.core.exceptions import (
    ConfigurationError,
    DatabaseError,
    ErrorSeverity,
    EventStreamError,
    UnavailableError,
    get_error_severity,
    is_transient_error,
    should_alert,
)
from presence.modules.shared.exceptions import (
    BadgeAlreadyOwnedError,
    BadgeNotOwnedError,
    DuplicateSessionError,
    NotFoundError,
    StatusCode,
    UnknownBadgeError,
    ValidationError,
    status_for,
)
from presence.modules.shared.pagination import PageData, Pageable


@pytest.mark.unit
class TestConfigManager:
    def test_dot_notation_lookup(self):
        assert ConfigManager.get("presence.search.default_page_size") == 20
        assert ConfigManager.get("presence.missing.key", "fallback") == "fallback"

    def test_typed_getters_fall_back_on_bad_types(self):
        ConfigManager.load_mapping({"a": {"int": "seven", "float": True}})

        assert ConfigManager.get_int("a.int", 7) == 7
        assert ConfigManager.get_float("a.float", 1.5) == 1.5

    def test_float_accepts_int(self):
        ConfigManager.load_mapping({"a": 2})

        assert ConfigManager.get_float("a", 0.0) == 2.0

    async def test_initialize_reads_yaml_tree(self, tmp_path):
        (tmp_path / "presence.yaml").write_text("presence:\n  online:\n    default_page_size: 7\n")
        (tmp_path / "broken.yaml").write_text("presence: [")

        await ConfigManager.initialize(tmp_path)

        assert ConfigManager.get_int("presence.online.default_page_size", 100) == 7

    async def test_reload_picks_up_edits(self, tmp_path):
        tunables = tmp_path / "presence.yaml"
        tunables.write_text("presence:\n  search:\n    default_page_size: 5\n")
        await ConfigManager.initialize(tmp_path)

        tunables.write_text("presence:\n  search:\n    default_page_size: 9\n")
        ConfigManager.reload()

        assert ConfigManager.get_int("presence.search.default_page_size", 0) == 9
        assert ConfigManager.get_metrics()["reloads"] >= 1

    async def test_shipped_config_directory(self):
        await ConfigManager.initialize()

        assert ConfigManager.get_int("presence.search.default_page_size", 0) == 20
        assert ConfigManager.get_int("presence.online.default_page_size", 0) == 100
        assert ConfigManager.get_int("core.redis.max_connections", 0) == 20


@pytest.mark.unit
class TestStaticConfig:
    def test_config_summary_has_no_secrets(self):
        summary = Config.get_config_summary()

        assert summary["environment"] == "testing"
        assert summary["database_url_set"] is True
        assert "database_url" not in summary

    def test_reload_safe_configs(self, monkeypatch):
        monkeypatch.setattr(Config, "QUERY_TIMEOUT_SECONDS", Config.QUERY_TIMEOUT_SECONDS)
        monkeypatch.setattr(Config, "HEALTH_CHECK_INTERVAL_SECONDS", Config.HEALTH_CHECK_INTERVAL_SECONDS)
        monkeypatch.setattr(Config, "LOG_LEVEL", Config.LOG_LEVEL)
        monkeypatch.setenv("QUERY_TIMEOUT_SECONDS", "2.5")

        Config.reload_safe_configs()

        assert Config.QUERY_TIMEOUT_SECONDS == 2.5

    def test_testing_environment(self):
        assert Config.is_testing()
        assert not Config.is_production()

    def test_unknown_environment_defaults_to_development(self):
        assert Environment.from_string("bogus") is Environment.DEVELOPMENT

    def test_safe_int_rejects_out_of_range(self, monkeypatch):
        monkeypatch.setenv("DATABASE_POOL_SIZE", "1000")

        assert Config._safe_int("DATABASE_POOL_SIZE", 10, min_val=1, max_val=200) == 10

    def test_safe_list_splits_and_strips(self, monkeypatch):
        monkeypatch.setenv("EVENT_STREAM_KEYS", " a:events , ,b:events ")

        assert Config._safe_list("EVENT_STREAM_KEYS", ["x"]) == ["a:events", "b:events"]


@pytest.mark.unit
class TestStatusMapping:
    @pytest.mark.parametrize(
        "exc, status",
        [
            (ValidationError("player_id", "bad"), StatusCode.INVALID_ARGUMENT),
            (NotFoundError("Player", "x"), StatusCode.NOT_FOUND),
            (UnknownBadgeError("ghost"), StatusCode.NOT_FOUND),
            (BadgeAlreadyOwnedError("p", "vip"), StatusCode.ALREADY_EXISTS),
            (BadgeNotOwnedError("p", "vip"), StatusCode.FAILED_PRECONDITION),
            (DuplicateSessionError("p"), StatusCode.FAILED_PRECONDITION),
            (UnavailableError("get_player", TimeoutError()), StatusCode.INTERNAL),
            (RuntimeError("boom"), StatusCode.INTERNAL),
        ],
    )
    def test_status_for(self, exc, status):
        assert status_for(exc) is status

    def test_structured_error_details(self):
        exc = BadgeAlreadyOwnedError("p1", "vip")

        assert exc.to_dict()["details"]["badge_id"] == "vip"
        assert exc.severity is ErrorSeverity.INFO
        assert not should_alert(exc)

    def test_infrastructure_errors(self):
        assert is_transient_error(EventStreamError("xreadgroup", "s", OSError("reset")))
        assert not is_transient_error(ConfigurationError("DATABASE_URL", "missing"))
        assert should_alert(ConfigurationError("DATABASE_URL", "missing"))

    def test_database_error_wraps_original(self):
        exc = DatabaseError("create_schema", OSError("disk full"))

        assert exc.is_retryable
        assert exc.details["error_type"] == "OSError"
        assert get_error_severity(exc) is ErrorSeverity.ERROR

    def test_unstructured_errors_default_to_error_severity(self):
        assert get_error_severity(KeyError("x")) is ErrorSeverity.ERROR
        assert not is_transient_error(KeyError("x"))


@pytest.mark.unit
class TestPagination:
    def test_zero_size_uses_default(self):
        assert Pageable(page=3).resolved_size(20) == 20
        assert Pageable(page=3).offset(20) == 60
        assert Pageable(page=3, size=5).offset(20) == 15

    def test_page_data_rounds_up(self):
        assert PageData.build(page=0, returned=20, total_elements=41, page_size=20).total_pages == 3
        assert PageData.build(page=0, returned=0, total_elements=0, page_size=20).total_pages == 0
