from __future__ import annotations

import logging

from perfume_pos.config import ENV_DATA_DIR, load_settings, persist_data_dir
from perfume_pos.errors import ConflictError, InsufficientStockError, PosError, ValidationError
from perfume_pos.logging_utils import get_logger


def test_settings_from_env(tmp_path, monkeypatch):
    monkeypatch.setenv(ENV_DATA_DIR, str(tmp_path / "data"))
    s = load_settings()
    assert s.data_dir == (tmp_path / "data").resolve()
    assert s.db_path.parent == s.data_dir
    assert s.currency == "UGX"
    assert s.default_decants_per_bottle == 10


def test_explicit_dir_wins_over_env(tmp_path, monkeypatch):
    monkeypatch.setenv(ENV_DATA_DIR, str(tmp_path / "env"))
    s = load_settings(tmp_path / "explicit")
    assert s.data_dir == (tmp_path / "explicit").resolve()


def test_persisted_dir_is_used(tmp_path, monkeypatch):
    monkeypatch.delenv(ENV_DATA_DIR, raising=False)
    home = tmp_path / "home"
    monkeypatch.setattr("perfume_pos.config._default_data_dir", lambda: home)
    persist_data_dir(str(tmp_path / "shop"))
    assert load_settings().data_dir == (tmp_path / "shop").resolve()


def test_errors_are_value_errors_with_codes():
    err = InsufficientStockError("Not enough", payload={"stock_group_id": 3})
    assert isinstance(err, PosError)
    assert isinstance(err, ValueError)
    assert str(err) == "Not enough"
    assert err.to_dict() == {
        "error": "InsufficientStockError",
        "message": "Not enough",
        "code": 409,
        "stock_group_id": 3,
    }
    assert ValidationError("x").code == 400
    assert ConflictError("x", code=422).code == 422


def test_get_logger_adds_one_handler():
    log = get_logger("perfume_pos.test")
    log2 = get_logger("perfume_pos.test")
    assert log is log2
    assert len(log.handlers) == 1
    assert log.level in (logging.DEBUG, logging.INFO, logging.WARNING, logging.ERROR)
