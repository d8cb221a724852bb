"""Streaming XML event parser for transpod.

Wraps expat so that a feed can be consumed as a forward-only iterator of
parse events instead of through callbacks. The document is fed to expat in
chunks; events produced by each chunk are yielded before the next chunk is
parsed.
"""

from collections.abc import Iterator
from xml.parsers import expat

from .models import (
    CData,
    CloseTag,
    Comment,
    OpenTag,
    ParseEvent,
    ProcessingInstruction,
    Text,
    TransformError,
    TransformErrorKind,
    XmlDeclaration,
)

DEFAULT_CHUNK_SIZE = 64 * 1024


class _EventCollector:
    """Turns expat callbacks into a queue of parse events."""

    def __init__(self):
        self.events: list[ParseEvent] = []
        self._text: list[str] = []
        self._cdata: list[str] | None = None

        self.parser = expat.ParserCreate()
        self.parser.buffer_text = True
        self.parser.ordered_attributes = True
        self.parser.XmlDeclHandler = self._xml_decl
        self.parser.StartElementHandler = self._start_element
        self.parser.EndElementHandler = self._end_element
        self.parser.CharacterDataHandler = self._character_data
        self.parser.StartCdataSectionHandler = self._start_cdata
        self.parser.EndCdataSectionHandler = self._end_cdata
        self.parser.CommentHandler = self._comment
        self.parser.ProcessingInstructionHandler = self._processing_instruction

    def drain(self, final: bool = False) -> list[ParseEvent]:
        """Return and clear the queued events.

        Text at the end of a chunk stays pending unless ``final`` is set,
        since the next chunk may continue the same run.
        """
        if final:
            self._flush_text()
        events, self.events = self.events, []
        return events

    def _flush_text(self) -> None:
        if self._text:
            self.events.append(Text("".join(self._text)))
            self._text = []

    def _xml_decl(self, version, encoding, standalone):
        self.events.append(XmlDeclaration(version=version, standalone=standalone))

    def _start_element(self, name, attributes):
        self._flush_text()
        pairs = list(zip(attributes[::2], attributes[1::2]))
        self.events.append(OpenTag(name, pairs))

    def _end_element(self, name):
        self._flush_text()
        self.events.append(CloseTag(name))

    def _character_data(self, data):
        if self._cdata is not None:
            self._cdata.append(data)
        else:
            self._text.append(data)

    def _start_cdata(self):
        self._flush_text()
        self._cdata = []

    def _end_cdata(self):
        self.events.append(CData("".join(self._cdata or [])))
        self._cdata = None

    def _comment(self, data):
        self._flush_text()
        self.events.append(Comment(data))

    def _processing_instruction(self, target, data):
        self._flush_text()
        self.events.append(ProcessingInstruction(target, data))


def iter_events(
    xml_text: str, chunk_size: int = DEFAULT_CHUNK_SIZE
) -> Iterator[ParseEvent]:
    """Parse XML text into a stream of events in document order.

    Args:
        xml_text: Complete XML document as text
        chunk_size: Number of characters handed to expat per step

    Yields:
        Parse events (open/close tags, text, CDATA, comments, PIs)

    Raises:
        TransformError: If the document is not well-formed
    """
    if chunk_size < 1:
        raise ValueError("chunk_size must be positive")

    collector = _EventCollector()
    try:
        for start in range(0, len(xml_text), chunk_size):
            collector.parser.Parse(xml_text[start : start + chunk_size], False)
            yield from collector.drain()
        collector.parser.Parse("", True)
    except expat.ExpatError as e:
        raise TransformError(
            TransformErrorKind.MALFORMED, f"Malformed XML: {e}"
        ) from e
    yield from collector.drain(final=True)
