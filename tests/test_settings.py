import pytest

from origin_alpaca.config.settings import Settings, load_settings


def test_defaults_match_origin_firmware():
    settings = Settings()
    assert settings.origin_port == 80
    assert settings.origin_ws_path == "/SmartScope-1.0/mountControlEndpoint"
    assert settings.origin_image_path == "/SmartScope-1.0/dev2/"
    assert settings.sequence_id_base == 2000
    assert settings.command_source == "AlpacaServer"
    assert settings.ws_ping_interval_seconds == 15.0
    assert settings.status_poll_interval_seconds == 5.0


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("ORIGIN_ALPACA_ORIGIN_HOST", "10.1.2.3")
    monkeypatch.setenv("ORIGIN_ALPACA_STATUS_POLL_INTERVAL_SECONDS", "2.5")
    settings = Settings()
    assert settings.origin_host == "10.1.2.3"
    assert settings.status_poll_interval_seconds == 2.5


def test_yaml_profile_overlays_settings(tmp_path):
    config = tmp_path / "origin.yaml"
    config.write_text("origin_host: 192.168.0.50\nsite_latitude_degrees: 48.1\n", encoding="utf-8")

    settings = load_settings(str(config))

    assert settings.origin_host == "192.168.0.50"
    assert settings.site_latitude_degrees == pytest.approx(48.1)
    assert settings.origin_port == 80


def test_yaml_profile_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_settings(str(tmp_path / "missing.yaml"))

    config = tmp_path / "list.yaml"
    config.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_settings(str(config))


def test_no_config_path_returns_plain_settings():
    assert load_settings(None).origin_host == Settings().origin_host
