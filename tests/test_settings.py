import pytest
from pydantic import ValidationError

from config.settings import (
    DatabaseSettings,
    Environment,
    LogLevel,
    MonitoringSettings,
    NotificationSettings,
    Settings,
    WebhookSettings,
)


def test_production_forces_debug_off():
    settings = Settings(
        environment=Environment.PRODUCTION,
        debug=True,
        database=DatabaseSettings(echo=True),
    )

    assert settings.debug is False
    assert settings.database.echo is False


def test_development_debug_lowers_log_level():
    settings = Settings(environment=Environment.DEVELOPMENT, debug=True)

    assert settings.logging.level == LogLevel.DEBUG


def test_monitoring_settings_fields():
    settings = MonitoringSettings()

    assert settings.max_interval == 86400
    assert settings.default_timeout == 30.0
    assert not hasattr(settings, "default_interval")


def test_default_channels_parse_from_comma_string():
    settings = NotificationSettings(default_channels="Push, email,")

    assert settings.default_channels == ["push", "email"]


@pytest.mark.parametrize(
    "factory",
    [
        lambda: WebhookSettings(base_delay=10.0, max_delay=5.0),
        lambda: DatabaseSettings(url="sqlite:///data/pingmaster.db"),
    ],
)
def test_inconsistent_settings_are_rejected(factory):
    with pytest.raises(ValidationError):
        factory()
