"""Logger setup for sushell."""
import logging
import os
import threading
from pathlib import Path

LOGGER_NAME = 'sushell'
DEFAULT_LOG_DIR = '/tmp/sushell_logs'
LOG_FORMAT = '%(asctime)s - [%(threadName)s] - %(name)s - %(levelname)s - %(message)s'

_setup_lock = threading.Lock()


def get_logger(name: str = LOGGER_NAME) -> logging.Logger:
    """Return the package logger, attaching the file handler on first use.

    Only a file handler is installed so that callers driving the shell
    streams through their own stdout never see log lines interleaved.
    """
    logger = logging.getLogger(name)
    with _setup_lock:
        if getattr(logger, '_sushell_configured', False):
            return logger

        log_dir = Path(os.environ.get('SUSHELL_LOG_DIR', DEFAULT_LOG_DIR))
        log_dir.mkdir(exist_ok=True, parents=True)
        log_file = log_dir / 'sushell.log'

        logger.setLevel(logging.DEBUG)
        logger.propagate = False

        file_handler = logging.FileHandler(str(log_file))
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(file_handler)
        logger._sushell_configured = True
        logger.info("Logger initialized")
    return logger
