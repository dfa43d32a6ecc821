import logging

import pytest

from buildwatch.logger import configure_logging, level_from_name, setup_logger


@pytest.fixture(autouse=True)
def reset_logger():
    yield
    for name in ("buildwatch", "buildwatch-test"):
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()


def test_setup_logger_with_file(tmp_path):
    logger = setup_logger("buildwatch-test", str(tmp_path / "logs"), console=False)
    logger.info("hello")
    for handler in logger.handlers:
        handler.flush()

    assert len(logger.handlers) == 1
    assert "hello" in (tmp_path / "logs" / "buildwatch-test.log").read_text()


def test_setup_logger_replaces_handlers():
    setup_logger("buildwatch-test")
    logger = setup_logger("buildwatch-test")
    assert len(logger.handlers) == 1


def test_level_from_name():
    assert level_from_name("debug") == logging.DEBUG
    assert level_from_name("WARNING") == logging.WARNING
    assert level_from_name("bogus") == logging.INFO
    assert level_from_name(logging.ERROR) == logging.ERROR


def test_configure_logging(tmp_path):
    config_path = str(tmp_path / "buildwatch.toml")
    cfg = {"logging": {"level": "warning", "log_dir": "logs"}}

    logger = configure_logging(cfg, config_path)
    assert logger.level == logging.WARNING
    assert (tmp_path / "logs").is_dir()

    assert configure_logging(cfg, config_path, debug=True).level == logging.DEBUG
    assert logging.getLogger("watchdog").level == logging.WARNING
