import pytest

from mcap_video_extract.config.constants import DEFAULT_EXTRACTION_CONFIG
from mcap_video_extract.config.settings import Config, load_config


def test_defaults():
    config = load_config(environ={}, dotenv=False)
    assert config.as_dict() == DEFAULT_EXTRACTION_CONFIG


def test_defaults_are_not_shared():
    config = load_config(environ={}, dotenv=False)
    config.set_setting('queue_size', 1)
    assert DEFAULT_EXTRACTION_CONFIG['queue_size'] == 32


def test_environment_overrides():
    config = load_config(environ={
        'MCAP_VIDEO_QUEUE_SIZE': '8',
        'MCAP_VIDEO_TIMEOUT': '2.5',
        'MCAP_VIDEO_WORKERS': '4',
        'MCAP_VIDEO_LOG_LEVEL': 'debug',
        'MCAP_VIDEO_LOG_TIME_ORDER': 'yes',
        'MCAP_VIDEO_FASTSTART': 'off',
    }, dotenv=False)
    assert config.get_setting('queue_size') == 8
    assert config.get_setting('timeout_seconds') == 2.5
    assert config.get_setting('max_workers') == 4
    assert config.get_setting('log_level') == 'DEBUG'
    assert config.get_setting('log_time_order') is True
    assert config.get_setting('faststart') is False


def test_zero_timeout_disables_deadline():
    config = load_config(environ={'MCAP_VIDEO_TIMEOUT': '0'}, dotenv=False)
    assert config.get_setting('timeout_seconds') is None


def test_explicit_overrides_win_and_none_is_ignored():
    config = load_config(
        {'queue_size': 4, 'max_workers': None},
        environ={'MCAP_VIDEO_QUEUE_SIZE': '8', 'MCAP_VIDEO_WORKERS': '2'},
        dotenv=False,
    )
    assert config.get_setting('queue_size') == 4
    assert config.get_setting('max_workers') == 2


def test_invalid_environment_value_names_variable():
    with pytest.raises(ValueError, match="MCAP_VIDEO_QUEUE_SIZE"):
        load_config(environ={'MCAP_VIDEO_QUEUE_SIZE': 'many'}, dotenv=False)


@pytest.mark.parametrize("overrides", [
    {'queue_size': 0},
    {'max_workers': 0},
    {'drain_timeout': -1.0},
])
def test_invalid_values_are_rejected(overrides):
    with pytest.raises(ValueError):
        load_config(overrides, environ={}, dotenv=False)


def test_dotenv_file_is_loaded(tmp_path, monkeypatch):
    (tmp_path / ".env").write_text("MCAP_VIDEO_QUEUE_SIZE=3\n")
    monkeypatch.chdir(tmp_path)
    # registered with monkeypatch so the value loaded from .env is removed afterwards
    monkeypatch.setenv('MCAP_VIDEO_QUEUE_SIZE', '99')
    monkeypatch.delenv('MCAP_VIDEO_QUEUE_SIZE')
    config = load_config()
    assert config.get_setting('queue_size') == 3


def test_unknown_override_is_rejected():
    with pytest.raises(ValueError, match="queue_sise"):
        load_config({'queue_sise': 4}, environ={}, dotenv=False)


def test_partial_config_falls_back_to_defaults():
    config = Config({'queue_size': 3})
    assert config.get_setting('queue_size') == 3
    assert config.get_setting('faststart', True) is True
    config.update_config({'faststart': False})
    assert config.as_dict() == {'queue_size': 3, 'faststart': False}
