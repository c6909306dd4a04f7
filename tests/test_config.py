"""Tests for proxycube.config."""

import pytest
from pydantic import ValidationError

from proxycube import config as config_module
from proxycube.config import ProxyCubeConfig, get_config, set_config


@pytest.fixture(autouse=True)
def _reset_global_config():
    yield
    set_config(None)


def test_defaults():
    cfg = ProxyCubeConfig()
    assert cfg.proxy_cell_threshold == config_module.DEFAULT_PROXY_CELL_THRESHOLD
    assert cfg.read_resampling == "nearest"
    assert cfg.display_shape == (1000, 1000)
    assert (cfg.x_dim, cfg.y_dim, cfg.bands_dim) == ("x", "y", "bands")


def test_from_env():
    cfg = ProxyCubeConfig.from_env(
        {
            "PROXYCUBE_PROXY_CELL_THRESHOLD": "5000",
            "PROXYCUBE_READ_RESAMPLING": "average",
            "PROXYCUBE_DISPLAY_SHAPE": "400x600",
            "PROXYCUBE_BANDS_DIM": "band",
            "UNRELATED": "1",
        }
    )
    assert cfg.proxy_cell_threshold == 5000
    assert cfg.read_resampling == "average"
    assert cfg.display_shape == (400, 600)
    assert cfg.bands_dim == "band"


def test_blank_env_values_are_ignored():
    cfg = ProxyCubeConfig.from_env({"PROXYCUBE_X_DIM": "  "})
    assert cfg.x_dim == "x"


def test_unknown_resampling():
    with pytest.raises(ValidationError, match="Unknown read resampling"):
        ProxyCubeConfig(read_resampling="magic")


def test_threshold_must_be_positive():
    with pytest.raises(ValidationError):
        ProxyCubeConfig(proxy_cell_threshold=0)


def test_display_shape_must_be_positive():
    with pytest.raises(ValidationError, match="positive"):
        ProxyCubeConfig(display_shape=(0, 10))


def test_frozen():
    cfg = ProxyCubeConfig()
    with pytest.raises(ValidationError):
        cfg.x_dim = "lon"  # type: ignore[misc]


def test_global_config_roundtrip():
    custom = ProxyCubeConfig(proxy_cell_threshold=10)
    set_config(custom)
    assert get_config() is custom


def test_global_config_reads_environment(monkeypatch):
    monkeypatch.setenv("PROXYCUBE_Y_DIM", "lat")
    set_config(None)
    assert get_config().y_dim == "lat"
