"""Minimal XML fragment tree for presence stanzas.

// [LAW:single-enforcer] parse_fragment is the sole XML validation boundary.
// [LAW:dataflow-not-control-flow] Rewrite rules are expressed as find/remove/set_text on Element.

Not a general XML library: elements, attributes and text only. Comments and
processing instructions are ignored. Each parsed element remembers the exact
bytes it was parsed from, and serializes back to them until it (or one of its
descendants) is mutated.

This module is STABLE. Safe for `from` imports everywhere.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from xml.parsers import expat

_WRAPPER_TAG = b"fragment"


class MalformedStanzaError(ValueError):
    """Raised when a chunk cannot be parsed as an XML fragment."""


@dataclass(eq=False)
class Element:
    """One XML element: tag, attributes, ordered children (elements or text)."""

    tag: str
    attrs: dict[str, str] = field(default_factory=dict)
    children: list["Element | str"] = field(default_factory=list)
    source: bytes | None = None

    # -- queries ------------------------------------------------------------

    def elements(self) -> list["Element"]:
        return [child for child in self.children if isinstance(child, Element)]

    def find(self, *path: str) -> "Element | None":
        """Follow *path* through first-matching child tags. None if any hop is missing."""
        node: Element | None = self
        for tag in path:
            node = next((child for child in node.elements() if child.tag == tag), None)
            if node is None:
                return None
        return node

    @property
    def text(self) -> str:
        return "".join(child for child in self.children if isinstance(child, str))

    def is_pristine(self) -> bool:
        """True when this subtree still matches its source bytes."""
        return self.source is not None and all(child.is_pristine() for child in self.elements())

    # -- mutations ----------------------------------------------------------

    def set_text(self, value: str) -> None:
        """Replace all content with a single text node."""
        self.children = [value]
        self.source = None

    def remove(self, *path: str) -> bool:
        """Remove the element at *path* (relative to self). Returns True if removed."""
        if not path:
            raise ValueError("remove() needs at least one tag")
        parent = self.find(*path[:-1])
        if parent is None:
            return False
        target = parent.find(path[-1])
        if target is None:
            return False
        parent.children.remove(target)
        parent.source = None
        return True

    def remove_child(self, child: "Element") -> None:
        self.children.remove(child)
        self.source = None

    # -- serialization ------------------------------------------------------

    def to_bytes(self) -> bytes:
        if self.is_pristine():
            return self.source  # type: ignore[return-value]
        attrs = "".join(f' {name}="{_escape_attr(value)}"' for name, value in self.attrs.items())
        if not self.children:
            return f"<{self.tag}{attrs}/>".encode("utf-8")
        parts = [f"<{self.tag}{attrs}>".encode("utf-8")]
        for child in self.children:
            if isinstance(child, Element):
                parts.append(child.to_bytes())
            else:
                parts.append(_escape_text(child).encode("utf-8"))
        parts.append(f"</{self.tag}>".encode("utf-8"))
        return b"".join(parts)


def _escape_text(value: str) -> str:
    return value.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def _escape_attr(value: str) -> str:
    return _escape_text(value).replace('"', "&quot;")


class _TreeBuilder:
    """Builds Elements from expat callbacks and records each element's source span.

    An element's end offset is only known once the parser reaches the next
    event, so the just-closed element waits in ``_closed`` until then.
    """

    def __init__(self, data: bytes, parser) -> None:
        self._data = data
        self._parser = parser
        self._stack: list[tuple[Element, int]] = []
        self._closed: tuple[Element, int] | None = None
        self.root: Element | None = None

        parser.StartElementHandler = self._start
        parser.EndElementHandler = self._end
        parser.CharacterDataHandler = self._chars
        parser.CommentHandler = self._skip
        parser.ProcessingInstructionHandler = self._skip

    def _settle(self) -> None:
        if self._closed is None:
            return
        element, start = self._closed
        element.source = self._data[start:self._parser.CurrentByteIndex]
        self._closed = None

    def _start(self, tag, attrs) -> None:
        self._settle()
        element = Element(tag=tag, attrs=dict(attrs))
        if self._stack:
            self._stack[-1][0].children.append(element)
        else:
            self.root = element
        self._stack.append((element, self._parser.CurrentByteIndex))

    def _end(self, tag) -> None:
        self._settle()
        self._closed = self._stack.pop()

    def _chars(self, text) -> None:
        self._settle()
        parent = self._stack[-1][0]
        if parent.children and isinstance(parent.children[-1], str):
            parent.children[-1] += text
        else:
            parent.children.append(text)

    def _skip(self, *_args) -> None:
        self._settle()


def parse_fragment(raw: bytes) -> list[Element]:
    """Parse *raw* (zero or more sibling elements) and return its top-level elements.

    Text between top-level elements is discarded.

    Raises:
        MalformedStanzaError: if the bytes are not a well-formed fragment.
    """
    data = b"<" + _WRAPPER_TAG + b">" + raw + b"</" + _WRAPPER_TAG + b">"
    parser = expat.ParserCreate("UTF-8")
    builder = _TreeBuilder(data, parser)
    try:
        parser.Parse(data, True)
    except expat.ExpatError as exc:
        raise MalformedStanzaError(f"invalid presence fragment: {exc}") from exc
    if builder.root is None:
        raise MalformedStanzaError("invalid presence fragment: no root element")
    return builder.root.elements()


def serialize_fragment(elements: list[Element]) -> bytes:
    """Concatenate top-level elements into a flat fragment. No XML declaration."""
    return b"".join(element.to_bytes() for element in elements)
