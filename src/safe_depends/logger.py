"""Functions for logging."""

import logging

# Chatty third-party loggers that drown out resolution progress at DEBUG
_QUIET_LOGGERS = ("urllib3", "sqlalchemy.engine")


def setup_logger(level: str) -> None:
    """Configure the root logger so every safe-depends module logs to stderr."""
    level_value = getattr(logging, level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(level_value)
    # Remove all handlers associated with the root logger (avoid duplicate logs)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(threadName)s - %(message)s"))
    root_logger.addHandler(handler)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level_value, logging.WARNING))
