# sortebem/errors.py

import logging

logger = logging.getLogger(__name__)

_reported = set()


class ConfigurationError(RuntimeError):
    """Raised when secret material or required settings are missing or too weak."""

    def __init__(self, setting, message):
        super().__init__(message)
        self.setting = setting


def report_configuration_error(error: ConfigurationError):
    """Log a configuration problem once per setting and hand the error back for raising."""
    if error.setting not in _reported:
        _reported.add(error.setting)
        logger.error("Configuration error for %s: %s", error.setting, error)
    return error


class StorageError(RuntimeError):
    """Raised by document stores when a write cannot be applied."""
