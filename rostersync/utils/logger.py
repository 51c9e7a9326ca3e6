import logging
import sys
from typing import Optional

from rostersync.utils.sentry import capture_error
from rostersync.utils.sentry import capture_warning
from rostersync.utils.sentry import is_production

ROOT_LOGGER = "rostersync"


class ContextFilter(logging.Filter):
    """
    Make sure every record has a `context` attribute so the formatters below never fail on
    records emitted through plain `logging.getLogger(__name__)` loggers.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "context"):
            record.context = {}
        return True


class Logger:
    def __init__(self, logLevel):
        self.logger = logging.getLogger(ROOT_LOGGER)
        self.setLevel(logLevel)

        # Add logging handler to print the log statement to standard output device
        handler = logging.StreamHandler(sys.stdout)
        handler.addFilter(ContextFilter())

        # Simplify log output for Production
        if is_production():
            formatter = logging.Formatter(
                "%(levelname)-s - %(filename)s - Line:%(lineno)d - %(message)s - %(context)s", "%Y-%m-%d %H:%M:%S",
            )

        else:
            formatter = logging.Formatter(
                "[%(asctime)s.%(msecs)03d] %(levelname)-s - %(filename)s - {%(funcName)s:%(lineno)d} - %(message)s - %(context)s",
                "%Y-%m-%d %H:%M:%S",
            )

        handler.setFormatter(formatter)
        self.logger.addHandler(handler)

        # Set logging level to error for libraries
        logging.getLogger('urllib3').setLevel(logging.ERROR)

    def setLevel(self, logLevel):
        self.logger.setLevel(logLevel)

    def _log(self, level: int, msg, *args, extra: Optional[dict] = None, **kwargs):
        # stacklevel=3 reports the caller of debug()/info()/..., not this wrapper
        kwargs.setdefault("stacklevel", 3)
        self.logger.log(level, msg, *args, extra={"context": extra or {}}, **kwargs)

    def debug(self, msg, *args, extra=None, **kwargs):
        self._log(logging.DEBUG, msg, *args, extra=extra, **kwargs)

    def info(self, msg, *args, extra=None, **kwargs):
        self._log(logging.INFO, msg, *args, extra=extra, **kwargs)

    def warning(self, msg, *args, extra=None, **kwargs):
        """
        Log 'msg % args' with severity 'WARNING' and forward it to Sentry in production.

        To pass additional context, use keyword argument extra with a dict value.
        """
        self._log(logging.WARNING, msg, *args, extra=extra, **kwargs)
        self._report(msg, extra)

    def error(self, msg, *args, extra=None, **kwargs):
        """
        Log 'msg % args' with severity 'ERROR' and forward it to Sentry in production.

        To pass additional context, use keyword argument extra with a dict value.
        """
        self._log(logging.ERROR, msg, *args, extra=extra, **kwargs)
        self._report(msg, extra)

    def exception(self, msg, *args, extra=None, **kwargs):
        kwargs.setdefault("exc_info", True)
        self._log(logging.ERROR, msg, *args, extra=extra, **kwargs)
        self._report(msg, extra)

    def critical(self, msg, *args, extra=None, **kwargs):
        self._log(logging.CRITICAL, msg, *args, extra=extra, **kwargs)
        self._report(msg, extra)

    def _report(self, msg, extra):
        error = sys.exc_info()[1]
        if error is not None:
            capture_error(msg, error, extra=extra)

        else:
            capture_warning(msg, extra=extra)


log_client = None


def get_logger(logLevel="INFO"):
    """Call this method just once. To create a new logger."""
    global log_client

    log_client = Logger(logLevel) if not log_client else log_client

    return log_client
