import json
from pathlib import Path

import pytest

from vatbake.config import config_from_dict, load_config
from vatbake.logs import setup_logger


def test_defaults():
    cfg = config_from_dict({})
    assert cfg.output_dir == Path("baked")
    assert cfg.log_path == Path("logs/vatbake.log")
    assert cfg.db_path is None
    assert cfg.encoding == "base64"
    assert cfg.write_texture is True
    assert cfg.print_json is False
    assert cfg.constant_delta_ms == pytest.approx(1000.0 / 60.0)
    assert cfg.max_steps_per_frame == 16
    assert cfg.ready_poll_s == 0.0


def test_values_are_cast(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "output_dir": "out/vat",
        "db_path": "cache/bakes.sqlite",
        "encoding": "DECIMAL",
        "write_texture": "off",
        "print_json": "yes",
        "max_steps_per_frame": "4",
    }), encoding="utf-8")

    cfg = load_config(path)
    assert cfg.output_dir == Path("out/vat")
    assert cfg.db_path == Path("cache/bakes.sqlite")
    assert cfg.encoding == "decimal"
    assert cfg.write_texture is False
    assert cfg.print_json is True
    assert cfg.max_steps_per_frame == 4


def test_unknown_encoding_is_rejected():
    with pytest.raises(ValueError):
        config_from_dict({"encoding": "hex"})


def _close(logger):
    for h in list(logger.handlers):
        h.close()
        logger.removeHandler(h)


def test_setup_logger_writes_to_file(tmp_path):
    path = tmp_path / "logs" / "bake.log"
    logger = setup_logger(path, name="vatbake.logtest")
    try:
        logger.info("baked %d frames", 5)
        for h in logger.handlers:
            h.flush()
        assert "INFO vatbake.logtest: baked 5 frames" in path.read_text(encoding="utf-8")
        assert setup_logger(path, name="vatbake.logtest").handlers == logger.handlers
    finally:
        _close(logger)


def test_setup_logger_adds_handler_per_file(tmp_path):
    first = setup_logger(tmp_path / "a.log", name="vatbake.logtest2")
    try:
        second = setup_logger(tmp_path / "b.log", name="vatbake.logtest2")
        assert second is first
        assert len(first.handlers) == 2
        first.warning("both")
        for h in first.handlers:
            h.flush()
        assert "WARNING" in (tmp_path / "a.log").read_text(encoding="utf-8")
        assert "both" in (tmp_path / "b.log").read_text(encoding="utf-8")
    finally:
        _close(first)
