# astro_edge/core/errors.py
from __future__ import annotations

from typing import Any, Dict, List, Optional, Union


class EdgeError(Exception):
    """Base class for everything the edge layer raises on purpose."""


class UpstreamError(EdgeError):
    """Upstream answered with a non-success status, or could not be reached.

    ``status`` is None for transport failures (DNS, refused, timeout).
    """

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status = status

    def __repr__(self) -> str:
        return f"UpstreamError(status={self.status!r}, message={self.message!r})"


class NotFound(EdgeError):
    """Upstream search returned no items for the query."""

    def __init__(self, query: str):
        super().__init__(f"No results found for {query!r}")
        self.query = query


class ValidationError(EdgeError, ValueError):
    """Structured request error (has .errors(), same shape as the validators)."""

    def __init__(self, details: Union[str, Dict[str, Any], List[Dict[str, Any]]]):
        if isinstance(details, str):
            self._details = [{"loc": [], "msg": details, "type": "value_error"}]
            super().__init__(details)
        elif isinstance(details, dict):
            self._details = [details]
            super().__init__(details.get("msg", "validation_error"))
        else:
            self._details = list(details)
            super().__init__(self._details[0]["msg"] if self._details else "validation_error")

    def errors(self) -> List[Dict[str, Any]]:
        return list(self._details)


class SchemaError(EdgeError, ValueError):
    """A CanonicalObject would break one of its invariants."""


class NotFoundError(LookupError):
    """Raised by the client repository once every tier is exhausted.

    ``offline`` is True when the answer came from local data only, so the
    caller can show an offline indicator instead of a plain miss.
    """

    def __init__(self, key: str, message: str = "Data not found", *, offline: bool = False):
        super().__init__(f"{message} (id: {key})")
        self.key = key
        self.message = message
        self.offline = offline


class BackgroundRefreshFailure(Exception):
    """Wraps a failed background refresh. Never escapes the refresh task."""

    def __init__(self, key: str, cause: BaseException):
        super().__init__(f"background refresh failed for {key}: {cause!r}")
        self.key = key
        self.cause = cause
