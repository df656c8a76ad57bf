"""
pdf_objects.py - Minimal PDF object model and serializer.

Values placed into an object dictionary are either plain Python values
(bool, None, int, float, list, dict) or one of the tagged types below.
render() turns any of them into PDF syntax.

Object numbers are handed out by the Document that owns the objects, never
by a module-level counter. Registration order decides file order; the
cross-reference table is written by object number.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

PDF_HEADER = b"%PDF-1.5\n"

_NAME_DELIMITERS = set(b"()<>[]{}/%#")


@dataclass(frozen=True)
class Name:
    """PDF name object, stored without the leading slash."""
    value: str

    def __str__(self) -> str:
        return "/" + self.value


@dataclass(frozen=True)
class Ref:
    """Indirect reference (``12 0 R``)."""
    obj_id: int

    def __str__(self) -> str:
        return f"{self.obj_id} 0 R"


@dataclass(frozen=True)
class String:
    """Literal string, written between parentheses."""
    data: bytes


@dataclass(frozen=True)
class HexString:
    data: bytes


@dataclass(frozen=True)
class Raw:
    """Pre-formatted PDF syntax, written verbatim."""
    text: str


def text_string(text: str) -> String:
    """UTF-16BE text string with byte order mark."""
    return String(b"\xfe\xff" + text.encode("utf-16-be"))


def doc_string(text: str) -> String:
    """PDFDocEncoding (Latin-1) when possible, UTF-16BE otherwise."""
    try:
        return String(text.encode("latin-1"))
    except UnicodeEncodeError:
        return text_string(text)


def _render_name(name: str) -> bytes:
    out = bytearray(b"/")
    for b in name.encode("utf-8"):
        if b < 0x21 or b > 0x7E or b in _NAME_DELIMITERS:
            out += b"#%02X" % b
        else:
            out.append(b)
    return bytes(out)


def _render_literal(data: bytes) -> bytes:
    escaped = (
        data.replace(b"\\", b"\\\\")
        .replace(b"(", b"\\(")
        .replace(b")", b"\\)")
        .replace(b"\r", b"\\r")
    )
    return b"(" + escaped + b")"


def format_number(value: float) -> str:
    """Fixed-point number without trailing zeros."""
    text = f"{value:.4f}".rstrip("0").rstrip(".")
    return "0" if text in ("-0", "") else text


def render(value) -> bytes:
    """Serialize a dictionary value to PDF syntax."""
    if isinstance(value, bool):
        return b"true" if value else b"false"
    if value is None:
        return b"null"
    if isinstance(value, int):
        return str(value).encode("ascii")
    if isinstance(value, float):
        return format_number(value).encode("ascii")
    if isinstance(value, Name):
        return _render_name(value.value)
    if isinstance(value, Ref):
        return str(value).encode("ascii")
    if isinstance(value, String):
        return _render_literal(value.data)
    if isinstance(value, HexString):
        return b"<" + value.data.hex().upper().encode("ascii") + b">"
    if isinstance(value, Raw):
        return value.text.encode("latin-1")
    if isinstance(value, (list, tuple)):
        return b"[" + b" ".join(render(v) for v in value) + b"]"
    if isinstance(value, dict):
        parts = [_render_name(k) + b" " + render(v) for k, v in value.items()]
        return b"<< " + b" ".join(parts) + b" >>"
    raise TypeError(f"Cannot render {type(value).__name__} as a PDF value")


class PdfObject:
    """
    An indirect object: an ordered dictionary plus an optional stream.

    The Length entry follows the stream automatically.
    """

    def __init__(self, obj_id: int, dictionary: Optional[dict] = None, stream: Optional[bytes] = None):
        self._id = obj_id
        self.dictionary: Dict[str, object] = dict(dictionary or {})
        self.stream: Optional[bytes] = None
        if stream is not None:
            self.set_stream(stream)

    @property
    def id(self) -> int:
        return self._id

    @property
    def ref(self) -> Ref:
        return Ref(self._id)

    def set_stream(self, data: bytes):
        self.stream = bytes(data)
        self.dictionary["Length"] = len(self.stream)

    def __getitem__(self, key):
        return self.dictionary[key]

    def __setitem__(self, key, value):
        self.dictionary[key] = value

    def __delitem__(self, key):
        del self.dictionary[key]

    def __contains__(self, key):
        return key in self.dictionary

    def __len__(self):
        return len(self.dictionary)

    def get(self, key, default=None):
        return self.dictionary.get(key, default)

    def serialize(self) -> bytes:
        """Body of the object, from the dictionary to endobj."""
        parts = [b"<<\n"]
        for key, value in self.dictionary.items():
            parts.append(_render_name(key) + b" " + render(value) + b"\n")
        parts.append(b">>\n")
        if self.stream is not None:
            parts.append(b"stream\n")
            parts.append(self.stream)
            parts.append(b"\nendstream\n")
        parts.append(b"endobj\n")
        return b"".join(parts)

    def __repr__(self) -> str:
        return f"PdfObject({self._id}, {sorted(self.dictionary)})"


class Document:
    """
    Owns every registered object and the object number allocator.

    root and info must point at registered objects before serialize().
    """

    def __init__(self):
        self._next_id = 1
        self._objects: List[PdfObject] = []
        self._registered = set()
        self.root: Optional[PdfObject] = None
        self.info: Optional[PdfObject] = None

    @property
    def objects(self) -> List[PdfObject]:
        return list(self._objects)

    def new_object(self, dictionary: Optional[dict] = None, stream: Optional[bytes] = None) -> PdfObject:
        """Allocate an object number. The object is not registered yet."""
        obj = PdfObject(self._next_id, dictionary, stream)
        self._next_id += 1
        return obj

    def add(self, obj: PdfObject) -> int:
        """Register an object and return its number."""
        if obj.id in self._registered:
            raise ValueError(f"Object {obj.id} is already registered")
        if obj.id >= self._next_id:
            raise ValueError(f"Object {obj.id} was not allocated by this document")
        self._objects.append(obj)
        self._registered.add(obj.id)
        return obj.id

    def add_new(self, dictionary: Optional[dict] = None, stream: Optional[bytes] = None) -> PdfObject:
        obj = self.new_object(dictionary, stream)
        self.add(obj)
        return obj

    def serialize(self) -> bytes:
        """Render the complete file. Does not modify the document."""
        if self.root is None or self.info is None:
            raise ValueError("Document root and info objects must be set before serializing")
        for obj in (self.root, self.info):
            if obj.id not in self._registered:
                raise ValueError(f"Object {obj.id} is referenced from the trailer but not registered")

        out = bytearray(PDF_HEADER)
        offsets: Dict[int, int] = {}
        for obj in self._objects:
            offsets[obj.id] = len(out)
            out += b"%d 0 obj\n" % obj.id
            out += obj.serialize()

        size = max(offsets, default=0) + 1
        free = [n for n in range(1, size) if n not in offsets]
        if free:
            logger.debug(f"Object numbers allocated but never registered: {free}")
        next_free = dict(zip([0] + free, free + [0]))

        xref_start = len(out)
        out += b"xref\n"
        out += b"0 %d\n" % size
        out += b"%010d 65535 f \n" % next_free[0]
        for n in range(1, size):
            if n in offsets:
                out += b"%010d 00000 n \n" % offsets[n]
            else:
                out += b"%010d 00001 f \n" % next_free[n]
        out += b"trailer\n"
        out += b"<< /Size %d /Root %d 0 R /Info %d 0 R >>\n" % (size, self.root.id, self.info.id)
        out += b"startxref\n"
        out += b"%d\n" % xref_start
        out += b"%%EOF\n"
        return bytes(out)
