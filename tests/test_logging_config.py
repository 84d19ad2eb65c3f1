from __future__ import annotations

import dataclasses
import logging
import os
from logging.handlers import RotatingFileHandler

import pytest

from btc_prices.config import load_settings
from btc_prices.logging_config import configure_logging, log_file_path

NAMES = ("btc_prices.console", "btc_prices.file")


@pytest.fixture
def root_logger():
    root = logging.getLogger()
    saved_handlers = list(root.handlers)
    saved_level = root.level
    # Start from a root logger without this service's handlers
    for handler in saved_handlers:
        if handler.get_name() in NAMES:
            root.removeHandler(handler)
    yield root
    for handler in list(root.handlers):
        if handler not in saved_handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in saved_handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(saved_level)


def _settings(tmp_path, **overrides):
    return dataclasses.replace(load_settings(), log_dir=str(tmp_path / "logs"), **overrides)


def _ours(root: logging.Logger):
    return [h for h in root.handlers if h.get_name() in NAMES]


def test_handlers_follow_settings(root_logger, tmp_path) -> None:
    settings = _settings(tmp_path, log_level=logging.DEBUG, log_max_bytes=4096, log_backup_count=3)

    configure_logging(settings)

    assert root_logger.level == logging.DEBUG
    file_handler = next(h for h in _ours(root_logger) if h.get_name() == "btc_prices.file")
    assert isinstance(file_handler, RotatingFileHandler)
    assert file_handler.maxBytes == 4096
    assert file_handler.backupCount == 3
    assert file_handler.baseFilename == os.path.abspath(log_file_path(settings))
    assert os.path.isdir(settings.log_dir)


def test_repeated_configuration_does_not_duplicate_handlers(root_logger, tmp_path) -> None:
    settings = _settings(tmp_path)

    configure_logging(settings)
    configure_logging(dataclasses.replace(settings, log_level=logging.WARNING))

    assert sorted(h.get_name() for h in _ours(root_logger)) == sorted(NAMES)
    assert root_logger.level == logging.WARNING


def test_records_reach_the_log_file(root_logger, tmp_path) -> None:
    settings = _settings(tmp_path, log_level=logging.INFO)
    configure_logging(settings)

    logging.getLogger("obs.prices").info("price_refresh_done | current_usd: 65001")
    for handler in _ours(root_logger):
        handler.flush()

    with open(log_file_path(settings), encoding="utf-8") as fh:
        line = fh.read()
    assert "| INFO | obs.prices | price_refresh_done" in line
