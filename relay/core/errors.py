"""Error taxonomy shared by the intake pipeline and the management API."""

from __future__ import annotations


class RelayError(Exception):
    """Base class for errors rendered as `{"error": reason, "detail": message}`."""

    status_code: int = 500
    reason: str = "internal_error"

    def __init__(self, message: str, *, reason: str | None = None) -> None:
        super().__init__(message)
        if reason is not None:
            self.reason = reason


class ValidationError(RelayError):
    """Malformed or incomplete input at the protocol or API boundary."""

    status_code = 400
    reason = "validation_error"


class FormatError(RelayError):
    """Request body could not be parsed into the expected structure."""

    status_code = 400
    reason = "invalid_format"


class NotFoundError(RelayError):
    status_code = 404
    reason = "not_found"


class UpstreamError(RelayError):
    """Subscription store, cache or queue operation failed."""

    status_code = 502
    reason = "upstream_error"


class HubRequestError(RelayError):
    """The hub rejected or did not answer a subscription request.

    The management API reports this as a pending subscription rather than a
    server fault.
    """

    status_code = 202
    reason = "hub_request_failed"
