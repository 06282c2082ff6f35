import pytest

from booking_core.core import config


def test_get_bool_parses_common_truthy_values() -> None:
    assert config._get_bool(' Yes ') is True
    assert config._get_bool('0') is False
    assert config._get_bool(None, default=True) is True


def test_get_list_splits_and_trims() -> None:
    assert config._get_list('http://a.test, ,http://b.test ', ['x']) == ['http://a.test', 'http://b.test']
    assert config._get_list('', ['x']) == ['x']


def test_validate_runtime_config_rejects_default_secret_in_production(monkeypatch) -> None:
    monkeypatch.setattr(config, 'APP_ENV', 'production')
    monkeypatch.setattr(config, 'JWT_SECRET_KEY', 'change-me')
    monkeypatch.setattr(config, 'CRON_SECRET', 'cron-secret')

    with pytest.raises(RuntimeError, match='JWT_SECRET_KEY'):
        config.validate_runtime_config()


def test_validate_runtime_config_requires_cron_secret_in_production(monkeypatch) -> None:
    monkeypatch.setattr(config, 'APP_ENV', 'production')
    monkeypatch.setattr(config, 'JWT_SECRET_KEY', 'a-real-secret')
    monkeypatch.setattr(config, 'CRON_SECRET', '')

    with pytest.raises(RuntimeError, match='CRON_SECRET'):
        config.validate_runtime_config()


def test_validate_runtime_config_checks_ttl_bounds(monkeypatch) -> None:
    monkeypatch.setattr(config, 'APP_ENV', 'development')
    monkeypatch.setattr(config, 'RESERVATION_TTL_MINUTES', 60)

    with pytest.raises(RuntimeError, match='RESERVATION_TTL_MINUTES'):
        config.validate_runtime_config()


def test_validate_runtime_config_accepts_development_defaults(monkeypatch) -> None:
    monkeypatch.setattr(config, 'APP_ENV', 'development')
    monkeypatch.setattr(config, 'RESERVATION_TTL_MINUTES', 15)

    config.validate_runtime_config()
