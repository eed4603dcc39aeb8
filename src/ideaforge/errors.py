"""Error types shared by the scraper, the enrichment pipeline and the surfaces."""

from __future__ import annotations

from typing import Any


class IdeaforgeError(Exception):
    """Base error. ``code`` and ``status`` map the error onto a response."""

    code = "INTERNAL_ERROR"
    status = 500

    def __init__(self, message: str, **data: Any):
        super().__init__(message)
        self.message = message
        self.data = data

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data:
            payload["data"] = self.data
        return payload


class ConfigurationError(IdeaforgeError):
    """Source configuration is unusable (missing URL, unknown kind). Never retried."""

    code = "CONFIGURATION_ERROR"
    status = 400


class ValidationError(IdeaforgeError):
    code = "VALIDATION_ERROR"
    status = 400


class NotFoundError(IdeaforgeError):
    code = "NOT_FOUND"
    status = 404

    def __init__(self, resource: str, id: Any = None):
        super().__init__(f"{resource} {id} not found" if id is not None else f"{resource} not found",
                         resource=resource, id=id)


class FetchError(IdeaforgeError):
    """An upstream request failed or answered with a non-success status."""

    code = "EXTERNAL_SERVICE_ERROR"
    status = 502

    def __init__(self, message: str, *, url: str = "", http_status: int | None = None):
        super().__init__(message, url=url, http_status=http_status)
        self.url = url
        self.http_status = http_status
