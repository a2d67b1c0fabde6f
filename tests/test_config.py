import pytest

from onlyjobs import config as config_module
from onlyjobs.config import Config, get_config, load_config, reset_config


@pytest.fixture(autouse=True)
def fresh_config(monkeypatch):
    monkeypatch.setattr(config_module, "_config", None)


def test_load_config_from_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "batch_size: 5\n"
        "auto_approve_threshold: 0.95\n"
        "hiring_platform_domains:\n"
        "  - ats.example\n"
    )

    cfg = load_config(path)

    assert cfg.batch_size == 5
    assert cfg.auto_approve_threshold == 0.95
    assert cfg.hiring_platform_domains == {"ats.example"}
    assert cfg.needs_review_threshold == 0.7
    assert get_config() is cfg


def test_empty_yaml_uses_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("")

    cfg = load_config(path)

    assert cfg == Config()


def test_missing_file_has_a_hint(tmp_path):
    with pytest.raises(FileNotFoundError, match="config.yaml.example"):
        load_config(tmp_path / "nope.yaml")


def test_reset_config(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("batch_size: 2\n")
    load_config(path)

    reset_config()

    assert config_module._config is None
