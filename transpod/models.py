"""Data models for transpod."""

from dataclasses import dataclass, field
from enum import Enum


@dataclass
class OpenTag:
    """Start of an element, with attributes in source order."""

    name: str
    attributes: list[tuple[str, str]] = field(default_factory=list)


@dataclass
class CloseTag:
    """End of an element."""

    name: str


@dataclass
class Text:
    """Character data outside CDATA sections, entities already resolved."""

    raw: str


@dataclass
class CData:
    """Content of a CDATA section, without the markers."""

    raw: str


@dataclass
class Comment:
    raw: str


@dataclass
class ProcessingInstruction:
    target: str
    data: str


@dataclass
class XmlDeclaration:
    version: str | None = "1.0"
    standalone: int = -1  # -1 means not declared


ParseEvent = (
    OpenTag | CloseTag | Text | CData | Comment | ProcessingInstruction | XmlDeclaration
)


@dataclass
class TransformResult:
    """Transformed feed text with item statistics."""

    xml: str
    items_seen: int
    items_emitted: int


class FetchErrorKind(Enum):
    HTTP_STATUS = "http_status"
    TIMEOUT = "timeout"
    TRANSPORT = "transport"
    TOO_LARGE = "too_large"


class TransformErrorKind(Enum):
    MALFORMED = "malformed"
    INTERNAL = "internal"


class TranspodError(Exception):
    """Base class for failures while processing a feed."""


class FetchError(TranspodError):
    """Raised when the upstream feed cannot be retrieved."""

    def __init__(
        self,
        kind: FetchErrorKind,
        message: str,
        status_code: int | None = None,
        reason: str | None = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code
        self.reason = reason


class TransformError(TranspodError):
    """Raised when a feed cannot be transformed."""

    def __init__(self, kind: TransformErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message
