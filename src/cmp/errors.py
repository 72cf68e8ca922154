"""Exception taxonomy for the CMP preview protocol.

Each failure kind maps to exactly one HTTP response in
:func:`src.cmp.webhook.handle_preview_webhook`.  Anything that is not a
:class:`CMPError` is treated as unexpected.
"""

from __future__ import annotations


class CMPError(Exception):
    """Base class for all preview-protocol failures."""


class PayloadParseError(CMPError):
    """The webhook body is not valid JSON."""


class PayloadValidationError(CMPError):
    """One or more required payload fields are absent or empty."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = list(missing)
        super().__init__(f"Missing required fields: {', '.join(self.missing)}")


class AuthError(CMPError):
    """The OAuth client-credentials exchange failed."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class CMPRequestError(CMPError):
    """An authenticated call to the CMP API did not return 2xx."""

    operation = "CMP request"

    def __init__(self, status_code: int | None, body: str) -> None:
        self.status_code = status_code
        self.body = body
        if status_code is None:
            message = f"{self.operation} failed: {body}"
        else:
            message = f"{self.operation} failed with status {status_code}: {body}"
        super().__init__(message)


class AcknowledgeError(CMPRequestError):
    operation = "Acknowledge request"


class CompletionError(CMPRequestError):
    operation = "Completion request"
