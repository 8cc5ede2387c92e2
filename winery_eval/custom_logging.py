import logging
from enum import StrEnum

LOG_FORMAT_DEBUG = "%(levelname)s - %(message)s - %(pathname)s - %(funcName)s %(lineno)d"
LOG_FORMAT_DEFAULT = "%(asctime)s %(levelname)s %(name)s - %(message)s"

# Third-party loggers that are chatty at DEBUG/INFO
NOISY_LOGGERS = ("httpx", "httpcore", "anthropic", "urllib3", "celery.redirected")

class LogLevels(StrEnum):
    debug = "DEBUG"
    info = "INFO"
    warn = "WARNING"
    error = "ERROR"

def configure_logging(log_level: str = LogLevels.error) -> None:
    log_level = str(log_level).upper()
    valid_levels = [level.value for level in LogLevels]

    if log_level not in valid_levels:
        logging.basicConfig(level=logging.ERROR, format=LOG_FORMAT_DEFAULT)
        logging.getLogger(__name__).warning(f"Unknown log level {log_level!r}, falling back to ERROR")
        return

    level_map = {
        LogLevels.debug: logging.DEBUG,
        LogLevels.info: logging.INFO,
        LogLevels.warn: logging.WARNING,
        LogLevels.error: logging.ERROR,
    }

    if log_level == LogLevels.debug:
        logging.basicConfig(level=level_map[LogLevels.debug], format=LOG_FORMAT_DEBUG)
    else:
        logging.basicConfig(level=level_map[log_level], format=LOG_FORMAT_DEFAULT)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level_map[log_level], logging.WARNING))
