import logging
import sys

from rolesync.configs.app_configs import LOG_LEVEL

_LOG_FORMAT = "%(levelname)-8s %(asctime)s %(filename)20s:%(lineno)-4d: %(message)s"
_DATE_FORMAT = "%m/%d/%Y %I:%M:%S %p"


def get_log_level_from_str(log_level_str: str = LOG_LEVEL) -> int:
    log_level_dict = {
        "CRITICAL": logging.CRITICAL,
        "ERROR": logging.ERROR,
        "WARNING": logging.WARNING,
        "INFO": logging.INFO,
        "DEBUG": logging.DEBUG,
        "NOTSET": logging.NOTSET,
    }
    return log_level_dict.get(log_level_str.upper(), logging.INFO)


def setup_logger(
    name: str = __name__,
    log_level: int = get_log_level_from_str(),
) -> logging.Logger:
    """Return a logger with a single stream handler attached.

    Safe to call at import time from every module; handlers are only attached
    the first time a given name is configured.
    """
    logger = logging.getLogger(name)

    if logger.handlers:
        return logger

    logger.setLevel(log_level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_DATE_FORMAT))
    logger.addHandler(handler)
    logger.propagate = False

    return logger
