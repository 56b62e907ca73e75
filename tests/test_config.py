import pytest
import yaml

from pomolog.core.config import (
    PRESETS,
    Settings,
    TimerConfig,
    YamlConfigProvider,
    apply_preset,
    default_config_path,
)
from pomolog.core.errors import ConfigError


def test_defaults():
    config = TimerConfig()

    assert (config.work_minutes, config.short_break_minutes, config.long_break_minutes) == (25, 5, 15)
    assert config.long_break_interval == 4
    assert config.focus_minutes == 50
    assert not config.auto_start_breaks
    assert not config.allow_skip_breaks
    assert config.allow_overtime


def test_from_dict_reports_every_bad_field():
    with pytest.raises(ConfigError) as exc_info:
        TimerConfig.from_dict({"work_minutes": 0, "long_break_interval": 11, "short_break_minutes": 5})

    errors = exc_info.value.errors
    assert len(errors) == 2
    assert any(e.startswith("work_minutes") for e in errors)
    assert any(e.startswith("long_break_interval") for e in errors)


@pytest.mark.parametrize(
    "field, value",
    [
        ("work_minutes", 181),
        ("short_break_minutes", 61),
        ("long_break_minutes", 121),
        ("long_break_interval", 1),
        ("overtime_allowance_minutes", -1),
    ],
)
def test_bounds(field, value):
    with pytest.raises(ConfigError):
        TimerConfig().updated(**{field: value})


def test_updated_coerces_strings():
    config = TimerConfig().updated(work_minutes="45", auto_start_work="true")

    assert config.work_minutes == 45
    assert config.auto_start_work is True


def test_presets():
    config = apply_preset(TimerConfig(), "long_focus")
    assert config.work_minutes == PRESETS["long_focus"]["work_minutes"]

    with pytest.raises(ConfigError):
        apply_preset(TimerConfig(), "marathon")


def test_yaml_provider_round_trip(tmp_path):
    settings = Settings(config_dir=tmp_path, data_dir=tmp_path / "data", log_dir=tmp_path / "logs")
    provider = YamlConfigProvider(settings)

    provider.save(TimerConfig(work_minutes=40, strict_mode=True))

    assert provider.get().work_minutes == 40
    data = yaml.safe_load(settings.config_file.read_text())
    assert data["timer"]["work_minutes"] == 40

    reloaded = Settings.load(settings.config_file)
    assert reloaded.timer.work_minutes == 40
    assert reloaded.timer.strict_mode is True


def test_yaml_provider_revalidates_unchecked_models(tmp_path):
    settings = Settings(config_dir=tmp_path, data_dir=tmp_path / "data", log_dir=tmp_path / "logs")
    provider = YamlConfigProvider(settings)

    with pytest.raises(ConfigError):
        provider.save(TimerConfig.model_construct(work_minutes=0))
    assert not settings.config_file.exists()


def test_load_rejects_invalid_yaml_values(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump({"timer": {"work_minutes": 999}}))

    with pytest.raises(ConfigError):
        Settings.load(path)


def test_environment_beats_yaml(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump({"timer": {"work_minutes": 30, "short_break_minutes": 7}}))
    monkeypatch.setenv("POMOLOG_TIMER__WORK_MINUTES", "45")

    settings = Settings.load(path)

    assert settings.timer.work_minutes == 45
    assert settings.timer.short_break_minutes == 7


def test_default_config_path_honours_env(tmp_path, monkeypatch):
    monkeypatch.setenv("POMOLOG_CONFIG_DIR", str(tmp_path))

    assert default_config_path() == tmp_path / "config.yaml"
