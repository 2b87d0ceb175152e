"""
Logging configuration.
"""
import logging
import sys


def setup_logging(level="INFO"):
    """Configure controller logging on the root logger."""
    log_level = getattr(logging, str(level).upper(), logging.INFO)

    logger = logging.getLogger()
    logger.setLevel(log_level)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(threadName)s - %(message)s"
    ))
    logger.addHandler(console_handler)

    # urllib3 logs every connection at debug
    logging.getLogger("urllib3").setLevel(max(log_level, logging.INFO))
