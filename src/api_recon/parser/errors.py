"""Errors raised while turning a document into an OpenApiSpec.

Conversion is all-or-nothing: any of these means no spec was produced.
"""


class SpecLoadError(Exception):
    """Base class for every conversion failure."""

    kind = "conversion-failure"

    def __init__(self, message: str, location: str | None = None):
        super().__init__(message)
        self.message = message
        self.location = location

    def __str__(self) -> str:
        if self.location:
            return f"{self.message} ({self.location})"
        return self.message


class DocumentNotFoundError(SpecLoadError):
    kind = "document-not-found"


class DocumentUnreachableError(SpecLoadError):
    kind = "document-unreachable"


class GrammarError(SpecLoadError):
    """The document is not valid YAML/JSON or not an OpenAPI document at all."""

    kind = "grammar-rejected"


class ConversionError(SpecLoadError):
    kind = "internal-conversion-failure"
