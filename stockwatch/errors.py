"""Error kinds raised across the stock monitor."""


class StockwatchError(Exception):
    """Base exception for the stock monitor."""


class ConfigurationError(StockwatchError):
    """Required configuration is missing or invalid. Fatal at startup."""


class AuthenticationFailure(StockwatchError):
    """Inbound signal failed signature verification."""


class UpstreamError(StockwatchError):
    """Catalog API returned a non-success response (or none at all)."""

    def __init__(self, status: int | None, reason: str = "", url: str = ""):
        self.status = status
        self.reason = reason
        self.url = url
        if status is None:
            message = f"Catalog request failed: {reason}"
        else:
            message = f"Catalog API error: {status} {reason}".rstrip()
        super().__init__(message)


class NotificationFailure(StockwatchError):
    """A notification sink could not deliver (transport error or timeout)."""
