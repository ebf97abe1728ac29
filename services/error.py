import sys
import traceback
import services.logger as log

l = log.get_logger()


class BotError(Exception):
    """Base class for failures that end in an apology reply."""


class TokenError(BotError):
    """The platform refused or failed to issue an access token."""


class DownloadError(BotError):
    """An attachment could not be downloaded.

    :param status: HTTP status code of the failed response, or ``None`` when
        the request never produced one (network failure, oversized body).
    :param message: Human-readable cause.
    """

    def __init__(self, status: int | None, message: str):
        super().__init__(message)
        self.status = status
        self.message = message

    def __str__(self):
        if self.status is None:
            return self.message
        return f"HTTP {self.status}: {self.message}"


class TransportError(BotError):
    """The OCR backend could not be reached."""


def _handle_uncaught_exceptions(exc_type, exc_value, exc_traceback):
    """Global exception handler for uncaught exceptions."""
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_traceback)
        return

    l.critical(
        "Unhandled exception caught:\n"
        + ''.join(traceback.format_exception(exc_type, exc_value, exc_traceback))
    )


def install_excepthook():
    sys.excepthook = _handle_uncaught_exceptions
