"""
Error taxonomy for the map index service.

Every failure raised by the store, index, ranker and query service derives
from :class:`MapServiceError`, which carries a stable machine-readable
``code`` and the HTTP status the web layer should answer with.
"""

from __future__ import annotations

from typing import Any, Dict


class MapServiceError(RuntimeError):
    """Base class for all service failures."""

    code: str = "internal_error"
    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        """Error body rendered by the HTTP layer."""
        return {"error": {"code": self.code, "message": self.message}}


# -----------------------------
# Build-time failures (server side)
# -----------------------------

class SourceUnavailable(MapServiceError):
    """The backing file or endpoint could not be read, or returned garbage."""

    code = "source_unavailable"


class SchemaError(MapServiceError):
    """A source record is missing required fields or has invalid values."""

    code = "schema_error"


class IndexUnavailable(MapServiceError):
    """No index is published and a rebuild is not currently allowed."""

    code = "index_unavailable"


# -----------------------------
# Caller errors
# -----------------------------

class InvalidRequest(MapServiceError):
    """Base class for errors caused by the caller's input."""

    code = "invalid_request"
    status_code = 400


class InvalidViewport(InvalidRequest):
    code = "invalid_viewport"


class EmptyQuery(InvalidRequest):
    code = "empty_query"


class MissingParameter(InvalidRequest):
    code = "missing_parameter"


class InvalidParameter(InvalidRequest):
    code = "invalid_parameter"


class UnknownCluster(MapServiceError):
    """Cluster id is malformed or belongs to another index build."""

    code = "unknown_cluster"
    status_code = 404


__all__ = [
    "MapServiceError",
    "SourceUnavailable",
    "SchemaError",
    "IndexUnavailable",
    "InvalidRequest",
    "InvalidViewport",
    "EmptyQuery",
    "MissingParameter",
    "InvalidParameter",
    "UnknownCluster",
]
