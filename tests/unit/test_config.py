"""
Unit tests for settings loading.
"""

from questify_consistency.core.config import ServiceSettings, get_settings, reset_settings


class TestServiceSettings:
    """Environment parsing and startup validation."""

    def test_defaults(self, monkeypatch):
        for name in ("OUTBOX_MAX_ATTEMPTS", "EXPORT_EXPECTED_SERVICES", "EXPORT_TTL_HOURS", "INTERNAL_TOKEN"):
            monkeypatch.delenv(name, raising=False)

        settings = ServiceSettings.from_env()

        assert settings.outbox.max_attempts == 10
        assert settings.export.ttl_hours == 24
        assert settings.export.expected_services == [
            "user-service", "quest-service", "submission-service", "proof-service",
        ]

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("OUTBOX_MAX_ATTEMPTS", "3")
        monkeypatch.setenv("OUTBOX_ENABLED", "false")
        monkeypatch.setenv("EXPORT_EXPECTED_SERVICES", "user-service, quest-service,")
        monkeypatch.setenv("TRANSPORT_BACKEND", "KAFKA")

        settings = ServiceSettings.from_env()

        assert settings.outbox.max_attempts == 3
        assert settings.outbox.enabled is False
        assert settings.export.expected_services == ["user-service", "quest-service"]
        assert settings.transport_backend == "kafka"

    def test_validate_settings_flags_issues(self):
        settings = ServiceSettings(internal_token="")
        settings.export.local_service = "billing-service"

        issues = settings.validate_settings()

        assert any("INTERNAL_TOKEN" in issue for issue in issues)
        assert any("billing-service" in issue for issue in issues)

    def test_get_settings_is_cached(self, monkeypatch):
        reset_settings()
        try:
            assert get_settings() is get_settings()
        finally:
            reset_settings()
