"""Detect where a document lives and which OpenAPI dialect it uses."""

from urllib.parse import urlparse


def detect_source(location: str) -> str:
    """Detect whether a location is a remote URL or a local file.

    Returns: 'url' or 'file'.
    """
    scheme = urlparse(location).scheme.lower()
    if scheme in ("http", "https"):
        return "url"
    return "file"


def detect_format(doc: object) -> str | None:
    """Detect the dialect of an already-parsed document.

    Returns: 'openapi' (3.x), 'swagger' (2.0), or None when the document
    is not an API description at all.
    """
    if not isinstance(doc, dict):
        return None
    if "openapi" in doc:
        return "openapi"
    if "swagger" in doc:
        return "swagger"
    return None
