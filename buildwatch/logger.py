import logging
import os

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logger(name, log_dir=None, log_filename=None, level=logging.INFO, console=True):
    """
    Set up and return a logger with an optional file handler and an optional
    console handler.

    Args:
        name (str): The logger name.
        log_dir (str): Directory where the log file will be stored. No file
            handler is added when this is None.
        log_filename (str): Log file name, defaults to "<name>.log".
        level (int): Logging level.
        console (bool): Whether to add a console (stderr) handler.

    Returns:
        logging.Logger: The configured logger.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Clear out any existing handlers.
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(os.path.join(log_dir, log_filename or f"{name}.log"))
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    return logger


def level_from_name(level_name, default=logging.INFO):
    """Map a level name such as "debug" to its logging constant."""
    if isinstance(level_name, int):
        return level_name
    return getattr(logging, str(level_name).upper(), default)


def configure_logging(cfg, config_path=None, debug=False):
    """
    Configure the "buildwatch" logger from the ``[logging]`` table.

    Keys: ``level`` (default INFO, DEBUG when debug is set) and ``log_dir``
    (resolved relative to the config file; no log file when absent).

    Returns:
        logging.Logger: The package logger.
    """
    logging_cfg = cfg.get("logging", {})
    level = logging.DEBUG if debug else level_from_name(logging_cfg.get("level", "INFO"))

    log_dir = logging_cfg.get("log_dir")
    if log_dir and config_path and not os.path.isabs(log_dir):
        log_dir = os.path.join(os.path.dirname(os.path.abspath(config_path)), log_dir)

    logger = setup_logger("buildwatch", log_dir, "buildwatch.log", level=level, console=True)
    # watchdog is chatty at DEBUG.
    logging.getLogger("watchdog").setLevel(logging.WARNING)
    return logger
