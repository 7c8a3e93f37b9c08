import logging
import os

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Third-party loggers that log full upstream URLs (including signed media
# query strings) at DEBUG level
QUIET_LOGGERS = ('urllib3', 'urllib3.connectionpool', 'charset_normalizer')

# uvicorn installs its own handlers; route them through the root logger instead
UVICORN_LOGGERS = ('uvicorn', 'uvicorn.error', 'uvicorn.access')


def setup_logging(log_file=None, log_level=None, quiet_loggers=QUIET_LOGGERS):
    """
    Setup logging configuration for the relay server and scripts

    Args:
        log_file: Log file path (optional, appended to)
        log_level: Log level name; falls back to config.LOG_LEVEL, then INFO
        quiet_loggers: Logger names that never go below WARNING

    Returns:
        The configured root logger
    """
    try:
        from config import LOG_LEVEL
        if log_level is None:
            log_level = LOG_LEVEL
    except ImportError:
        if log_level is None:
            log_level = 'INFO'

    numeric_level = getattr(logging, str(log_level).upper(), logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # uvicorn --reload calls this once per worker start
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir)

        file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    for name in quiet_loggers or ():
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    for name in UVICORN_LOGGERS:
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers = []
        uvicorn_logger.propagate = True

    return root_logger
