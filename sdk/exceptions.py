"""Exception hierarchy for the MAX Bot API SDK."""

from typing import Any, Dict, Optional

_RETRYABLE_STATUSES = frozenset({408, 429})


class APIException(Exception):
    """Non-2xx response from the MAX Bot API.

    Attributes:
        status_code: HTTP status code returned by the API.
        response_body: Raw response body as a dict, when available.
        retry_after: Server-provided ``Retry-After`` delay in seconds (0 if none).
    """

    def __init__(
        self,
        status_code: int,
        response_body: Optional[Dict[str, Any]] = None,
        retry_after: float = 0.0,
    ) -> None:
        """Initialise with the HTTP status code and optional body."""
        self.status_code = status_code
        self.response_body = response_body or {}
        self.retry_after = retry_after
        self.code = self.response_body.get("code")
        description = (
            self.response_body.get("message")
            or self.response_body.get("description")
            or self.response_body.get("error")
            or "Unknown error"
        )
        if self.code:
            super().__init__(f"API error {status_code} ({self.code}): {description}")
        else:
            super().__init__(f"API error {status_code}: {description}")

    @property
    def retryable(self) -> bool:
        """True for 408, 429 and any 5xx status."""
        return self.status_code in _RETRYABLE_STATUSES or self.status_code >= 500
