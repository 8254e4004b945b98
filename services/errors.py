class RelayError(Exception):
    """Base error for the relay. Carries the HTTP status sent back to the caller."""
    status = 500

    def __init__(self, message, status=None):
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status


class InvalidTargetError(RelayError):
    """The requested target is missing or is not a well-formed absolute URL."""
    status = 400


class UpstreamError(RelayError):
    """The origin answered with a non-2xx status."""

    def __init__(self, status, reason):
        super().__init__(f"Upstream error: {status} {reason}".rstrip(), status=status)
        self.reason = reason


class ProxyNetworkError(RelayError):
    """DNS, connection or timeout failure while contacting the origin."""
    status = 500
