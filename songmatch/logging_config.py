import logging
from pathlib import Path

from songmatch.config import LoggingConfig

FORMAT = "%(asctime)s | %(name)s %(filename)s:%(lineno)d | %(levelname)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logger(name=None, level=None, log_file=None):
    """
    Set up a songmatch module logger.

    Records go to the console and, when configured, to a log file as
    well. Both the level and the file can come from the environment
    (SONGMATCH_LOG_LEVEL, SONGMATCH_LOG_FILE); explicit arguments win.

    Args:
        name: Logger name (use __name__ to get module name)
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional path of a log file shared by all loggers

    Returns:
        logger: Configured logger instance
    """
    level = level if level is not None else LoggingConfig.LEVEL
    log_file = log_file or LoggingConfig.FILE

    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Prevent duplicate handlers
    if logger.handlers:
        return logger

    formatter = logging.Formatter(fmt=FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger
