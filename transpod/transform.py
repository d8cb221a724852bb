"""Item-bounded feed transformation for transpod."""

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from xml.sax.saxutils import escape

from .config import TransformConfig
from .logging_config import create_execution_logger
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
    TransformResult,
    XmlDeclaration,
)
from .parser import iter_events

ITEM_TAG = "item"

# Output chunk kinds, used by the whitespace cleanup pass
_OPEN = "open"
_CLOSE = "close"
_TEXT = "text"
_SPACE = "space"
_MARKUP = "markup"

_TEXT_ENTITIES = {"\r": "&#13;"}
_ATTRIBUTE_ENTITIES = {
    '"': "&quot;",
    "'": "&apos;",
    "\n": "&#10;",
    "\r": "&#13;",
    "\t": "&#9;",
}
# Expat folds line endings to \n, so a parsed \r came from a character
# reference and counts as content, as do NBSP and other Unicode spaces
_XML_WHITESPACE = " \t\n"
_BLANK_LINES = re.compile(r"(?<=\n)[ \t]*\n")

Chunk = tuple[str, str]


def escape_text(value: str) -> str:
    """Escape ampersand, less-than and greater-than, and carriage returns."""
    return escape(value, _TEXT_ENTITIES)


def escape_attribute(value: str) -> str:
    """Escape an attribute value, quotes included."""
    return escape(value, _ATTRIBUTE_ENTITIES)


def wrap_cdata(value: str) -> str:
    # A literal "]]>" can only come from synthetic events; split it across sections
    return "<![CDATA[" + value.replace("]]>", "]]]]><![CDATA[>") + "]]>"


@dataclass
class TransformState:
    """Mutable state of a single transform call."""

    limit: int
    replacement_url: str | None = None
    inside_item: bool = False
    item_count: int = 0
    skip_current_item: bool = False
    current_item_buffer: list[Chunk] = field(default_factory=list)
    result: list[Chunk] = field(default_factory=list)
    element_stack: list[str] = field(default_factory=list)
    item_depth: int = 0
    items_emitted: int = 0
    self_link_rewritten: bool = False

    def sink(self) -> list[Chunk] | None:
        """Buffer receiving output right now, or None inside a skipped item."""
        if not self.inside_item:
            return self.result
        if self.skip_current_item:
            return None
        return self.current_item_buffer


class FeedTransformer:
    """Truncates a feed to its first N items in one streaming pass."""

    def __init__(
        self, config: TransformConfig | None = None, execution_id: str | None = None
    ):
        self.config = config or TransformConfig()
        self.logger = create_execution_logger("feed_transformer", execution_id)

    def transform(
        self, xml_text: str, limit: int, replacement_url: str | None = None
    ) -> str:
        """Return ``xml_text`` with at most ``limit`` items."""
        return self.transform_with_stats(xml_text, limit, replacement_url).xml

    def transform_with_stats(
        self, xml_text: str, limit: int, replacement_url: str | None = None
    ) -> TransformResult:
        """Transform a feed and report how many items were seen and kept.

        Args:
            xml_text: Raw feed document
            limit: Maximum number of items to keep (0 keeps none)
            replacement_url: URL written into the feed's self-link, if non-empty

        Returns:
            TransformResult with the serialized XML and item counts

        Raises:
            ValueError: If limit is negative
            TransformError: If the document is malformed
        """
        self.logger.debug(
            "Starting feed transform", limit=limit, input_length=len(xml_text)
        )
        try:
            result = self.apply_events(
                iter_events(xml_text, self.config.chunk_size), limit, replacement_url
            )
        except TransformError as e:
            self.logger.error(
                f"Feed transform failed: {e.message}",
                error_kind=e.kind.value,
                limit=limit,
            )
            raise

        self.logger.info(
            "Feed transformed",
            limit=limit,
            items_seen=result.items_seen,
            items_emitted=result.items_emitted,
            output_length=len(result.xml),
        )
        return result

    def apply_events(
        self,
        events: Iterable[ParseEvent],
        limit: int,
        replacement_url: str | None = None,
    ) -> TransformResult:
        """Run the item-limiting state machine over a sequence of events."""
        if limit < 0:
            raise ValueError("limit must not be negative")

        state = TransformState(limit=limit, replacement_url=replacement_url)
        for event in events:
            if isinstance(event, OpenTag):
                self._open_tag(state, event)
            elif isinstance(event, CloseTag):
                self._close_tag(state, event)
            elif isinstance(event, Text):
                kind = _SPACE if not event.raw.strip(_XML_WHITESPACE) else _TEXT
                self._emit(state, kind, escape_text(event.raw))
            elif isinstance(event, CData):
                self._emit(state, _MARKUP, wrap_cdata(event.raw))
            elif isinstance(event, Comment):
                self._emit(state, _MARKUP, f"<!--{event.raw}-->")
            elif isinstance(event, ProcessingInstruction):
                body = f"{event.target} {event.data}" if event.data else event.target
                self._emit(state, _MARKUP, f"<?{body}?>")
            elif isinstance(event, XmlDeclaration):
                self._emit(state, _MARKUP, self._declaration(event))
            else:
                raise TransformError(
                    TransformErrorKind.INTERNAL,
                    f"Unknown parse event: {type(event).__name__}",
                )

        if state.element_stack:
            raise TransformError(
                TransformErrorKind.INTERNAL,
                f"Unclosed element <{state.element_stack[-1]}> at end of input",
            )

        if self.config.normalize_whitespace:
            xml = normalize_whitespace(state.result)
        else:
            xml = "".join(value for _, value in state.result)

        return TransformResult(
            xml=xml, items_seen=state.item_count, items_emitted=state.items_emitted
        )

    def _emit(self, state: TransformState, kind: str, value: str) -> None:
        sink = state.sink()
        if sink is not None:
            sink.append((kind, value))

    def _open_tag(self, state: TransformState, event: OpenTag) -> None:
        key = event.name.lower()
        state.element_stack.append(key)

        if key == ITEM_TAG and not state.inside_item:
            state.inside_item = True
            state.item_count += 1
            state.skip_current_item = state.item_count > state.limit
            state.item_depth = len(state.element_stack)
            if not state.skip_current_item:
                state.current_item_buffer.append(
                    (_OPEN, self._serialize_open(event.name, event.attributes))
                )
            return

        attributes = event.attributes
        if not state.inside_item:
            attributes = self._rewrite_self_link(state, key, attributes)
        self._emit(state, _OPEN, self._serialize_open(event.name, attributes))

    def _close_tag(self, state: TransformState, event: CloseTag) -> None:
        key = event.name.lower()
        if not state.element_stack or state.element_stack[-1] != key:
            raise TransformError(
                TransformErrorKind.INTERNAL,
                f"Close tag </{event.name}> without matching open tag",
            )

        closes_item = state.inside_item and len(state.element_stack) == state.item_depth
        state.element_stack.pop()
        closing = (_CLOSE, f"</{self._name(event.name)}>")

        if not closes_item:
            self._emit(state, *closing)
            return

        if not state.skip_current_item:
            state.current_item_buffer.append(closing)
            state.result.extend(state.current_item_buffer)
            state.items_emitted += 1
        state.current_item_buffer = []
        state.inside_item = False
        state.skip_current_item = False
        state.item_depth = 0

    def _rewrite_self_link(
        self, state: TransformState, key: str, attributes: list[tuple[str, str]]
    ) -> list[tuple[str, str]]:
        if not state.replacement_url or state.self_link_rewritten:
            return attributes
        if key != "link" and not key.endswith(":link"):
            return attributes

        values = {name.lower(): value for name, value in attributes}
        if "self" not in values.get("rel", "").lower().split() or "href" not in values:
            return attributes

        state.self_link_rewritten = True
        self.logger.debug("Rewriting feed self-link", original_href=values["href"])
        return [
            (name, state.replacement_url if name.lower() == "href" else value)
            for name, value in attributes
        ]

    def _serialize_open(self, name: str, attributes: list[tuple[str, str]]) -> str:
        parts = [self._name(name)]
        for attr_name, value in attributes:
            parts.append(f'{self._name(attr_name)}="{escape_attribute(value)}"')
        return "<" + " ".join(parts) + ">"

    def _name(self, name: str) -> str:
        return name if self.config.preserve_name_case else name.lower()

    @staticmethod
    def _declaration(event: XmlDeclaration) -> str:
        declaration = f'<?xml version="{event.version or "1.0"}" encoding="UTF-8"'
        if event.standalone == 1:
            declaration += ' standalone="yes"'
        elif event.standalone == 0:
            declaration += ' standalone="no"'
        return declaration + "?>"


def normalize_whitespace(chunks: list[Chunk]) -> str:
    """Join output chunks, removing insignificant inter-tag whitespace.

    A whitespace run holding a newline between a close tag and an open tag
    is dropped. Other whitespace runs lose their blank lines, except when the
    run is the whole content of an element.
    """
    merged: list[Chunk] = []
    for kind, value in chunks:
        if merged and kind in (_TEXT, _SPACE) and merged[-1][0] in (_TEXT, _SPACE):
            previous_kind, previous_value = merged[-1]
            merged_kind = _SPACE if _SPACE == kind == previous_kind else _TEXT
            merged[-1] = (merged_kind, previous_value + value)
        else:
            merged.append((kind, value))

    output = []
    for index, (kind, value) in enumerate(merged):
        if kind == _SPACE and "\n" in value:
            before = merged[index - 1][0] if index > 0 else None
            after = merged[index + 1][0] if index + 1 < len(merged) else None
            if before == _CLOSE and after == _OPEN:
                continue
            if not (before == _OPEN and after == _CLOSE):
                value = _BLANK_LINES.sub("", value)
        output.append(value)
    return "".join(output)


def transform(xml_text: str, limit: int, replacement_url: str | None = None) -> str:
    """Transform a feed with the default configuration."""
    return FeedTransformer().transform(xml_text, limit, replacement_url)
