"""Small document builders shared by the compile targets.

Targets assemble an ``XmlNode`` tree, a ``CodeWriter`` or a ``PdPatch`` and
render it once; escaping lives here and nowhere else.
"""

from __future__ import annotations

import json
import xml.etree.ElementTree as ET
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator

from .lowering import format_number

_XML_DECLARATION = '<?xml version="1.0" encoding="utf-8"?>\n'
_COMMENT_TAG = "!--"


# -----------------------------------------------------------------------------
# XML
# -----------------------------------------------------------------------------


def _attr_value(value: object) -> str:
    if isinstance(value, bool):
        return "True" if value else "False"
    if isinstance(value, (int, float)):
        return format_number(value)
    return str(value)


@dataclass
class XmlNode:
    tag: str
    attrs: dict[str, str] = field(default_factory=dict)
    children: list["XmlNode"] = field(default_factory=list)
    text: str | None = None

    @classmethod
    def of(cls, tag: str, text: str | None = None, **attrs: object) -> "XmlNode":
        return cls(tag, {key: _attr_value(value) for key, value in attrs.items()}, text=text)

    def add(self, tag: str, text: str | None = None, **attrs: object) -> "XmlNode":
        child = XmlNode.of(tag, text, **attrs)
        self.children.append(child)
        return child

    def append(self, node: "XmlNode") -> "XmlNode":
        self.children.append(node)
        return node

    def comment(self, text: str) -> None:
        self.children.append(XmlNode(_COMMENT_TAG, text=text))


def _to_element(node: XmlNode) -> ET.Element:
    if node.tag == _COMMENT_TAG:
        # "--" is not allowed inside an XML comment.
        return ET.Comment(f" {(node.text or '').replace('--', '- -')} ")
    element = ET.Element(node.tag, node.attrs)
    element.text = node.text
    for child in node.children:
        element.append(_to_element(child))
    return element


def render_xml(root: XmlNode, *, declaration: bool = True) -> str:
    element = _to_element(root)
    ET.indent(element, space="    ")
    body = ET.tostring(element, encoding="unicode")
    return (_XML_DECLARATION if declaration else "") + body + "\n"


# -----------------------------------------------------------------------------
# Source code
# -----------------------------------------------------------------------------


def _escape_c_like(text: str, *, unicode_escape: str) -> str:
    out: list[str] = []
    for char in text:
        match char:
            case "\\":
                out.append("\\\\")
            case '"':
                out.append('\\"')
            case "\n":
                out.append("\\n")
            case "\r":
                out.append("\\r")
            case "\t":
                out.append("\\t")
            case _ if ord(char) < 0x20:
                out.append(unicode_escape.format(ord(char)))
            case _:
                out.append(char)
    return "".join(out)


def csharp_string(text: str) -> str:
    return '"' + _escape_c_like(text, unicode_escape="\\u{:04x}") + '"'


def cpp_string(text: str) -> str:
    return '"' + _escape_c_like(text, unicode_escape="\\{:03o}") + '"'


def js_string(text: str) -> str:
    # ensure_ascii also escapes U+2028/U+2029, which are line breaks in older JS.
    return json.dumps(text, ensure_ascii=True).replace("</", "<\\/")


def comment_text(text: str) -> str:
    """Flatten text for a single-line ``//`` comment."""

    return " ".join(text.split()).replace("*/", "* /")


class CodeWriter:
    """Indented line builder for C#, C++ and JavaScript output."""

    def __init__(self, indent: str = "    ") -> None:
        self._indent = indent
        self._level = 0
        self._lines: list[str] = []

    def line(self, text: str = "") -> "CodeWriter":
        self._lines.append(f"{self._indent * self._level}{text}" if text else "")
        return self

    def lines(self, *texts: str) -> "CodeWriter":
        for text in texts:
            self.line(text)
        return self

    @contextmanager
    def indented(self) -> Iterator[None]:
        self._level += 1
        try:
            yield
        finally:
            self._level -= 1

    @contextmanager
    def block(self, header: str, closer: str = "}") -> Iterator[None]:
        self.line(f"{header} {{" if header else "{")
        with self.indented():
            yield
        self.line(closer)

    def render(self) -> str:
        while self._lines and not self._lines[-1]:
            self._lines.pop()
        return "\n".join(self._lines) + "\n"


# -----------------------------------------------------------------------------
# Pure Data patches
# -----------------------------------------------------------------------------


def pd_atom(value: object) -> str:
    """One Pd atom: whitespace collapsed, ``$ ; ,`` escaped."""

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return format_number(value)
    text = "_".join(str(value).split()) or "empty"
    return text.replace("\\", "").replace("$", "\\$").replace(";", "\\;").replace(",", "\\,")


class PdPatch:
    """Pd canvas; every object, message and comment takes the next object index."""

    def __init__(self, width: int = 800, height: int = 600, font: int = 10) -> None:
        self._header = f"#N canvas 0 0 {width} {height} {font};"
        self._records: list[str] = []
        self._connections: list[str] = []
        self._count = 0

    def _add(self, kind: str, x: int, y: int, atoms: tuple[object, ...]) -> int:
        rendered = " ".join(pd_atom(atom) for atom in atoms)
        self._records.append(f"#X {kind} {x} {y} {rendered};")
        index = self._count
        self._count += 1
        return index

    def obj(self, x: int, y: int, *atoms: object) -> int:
        return self._add("obj", x, y, atoms)

    def msg(self, x: int, y: int, *atoms: object) -> int:
        return self._add("msg", x, y, atoms)

    def text(self, x: int, y: int, text: str) -> int:
        return self._add("text", x, y, tuple(text.split()))

    def connect(self, source: int, outlet: int, sink: int, inlet: int) -> None:
        if not (0 <= source < self._count and 0 <= sink < self._count):
            raise ValueError(f"Cannot connect {source} -> {sink}: unknown object index")
        self._connections.append(f"#X connect {source} {outlet} {sink} {inlet};")

    def render(self) -> str:
        return "\n".join([self._header, *self._records, *self._connections]) + "\n"


# -----------------------------------------------------------------------------
# JSON
# -----------------------------------------------------------------------------


def render_json(data: Any) -> str:
    return json.dumps(data, sort_keys=True, indent=2, ensure_ascii=False) + "\n"
