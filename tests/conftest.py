import io
import struct
import zlib
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pytest
from PIL import Image, ImageDraw

from pdf_assembler.compression import to_group4_tiff

_TIFF_TYPES = {3: "H", 4: "I", 5: "II"}


def build_tiff(width: int, height: int, strips: Sequence[bytes], order: str = "<",
               photometric: int = 1, bits: int = 8, compression: int = 1,
               rows_per_strip: Optional[int] = None, resolution: Optional[Tuple[int, int]] = None,
               unit: int = 2, colormap: Optional[List[int]] = None,
               extra: Optional[Dict[int, Tuple[int, list]]] = None,
               omit: Sequence[int] = (), next_ifd: int = 0) -> bytes:
    """Byte-exact single-IFD TIFF: header, strip data, IFD, out-of-line values."""
    magic = b"II\x2a\x00" if order == "<" else b"MM\x00\x2a"

    body = bytearray()
    offsets = []
    for strip in strips:
        offsets.append(8 + len(body))
        body += strip
    if len(body) % 2:
        body += b"\x00"
    ifd_offset = 8 + len(body)

    entries: Dict[int, Tuple[int, list]] = {
        0x100: (4, [width]),
        0x101: (4, [height]),
        0x102: (3, [bits]),
        0x103: (3, [compression]),
        0x106: (3, [photometric]),
        0x111: (4, offsets),
        0x116: (4, [rows_per_strip or height]),
        0x117: (4, [len(s) for s in strips]),
    }
    if resolution is not None:
        entries[0x11A] = (5, [(resolution[0], 1)])
        entries[0x11B] = (5, [(resolution[1], 1)])
        entries[0x128] = (3, [unit])
    if colormap is not None:
        entries[0x140] = (3, colormap)
    entries.update(extra or {})
    for tag in omit:
        entries.pop(tag, None)

    ifd = bytearray(struct.pack(order + "H", len(entries)))
    values = bytearray()
    values_offset = ifd_offset + 2 + 12 * len(entries) + 4
    for tag in sorted(entries):
        type_code, items = entries[tag]
        code = _TIFF_TYPES[type_code]
        if type_code == 5:
            raw = b"".join(struct.pack(order + "II", *item) for item in items)
        else:
            raw = b"".join(struct.pack(order + code, item) for item in items)
        if len(raw) <= 4:
            field = raw.ljust(4, b"\x00")
        else:
            field = struct.pack(order + "I", values_offset + len(values))
            values += raw
        ifd += struct.pack(order + "HHI", tag, type_code, len(items)) + field
    ifd += struct.pack(order + "I", next_ifd)

    return magic + struct.pack(order + "I", ifd_offset) + bytes(body) + bytes(ifd) + bytes(values)


def png_chunk(tag: bytes, data: bytes) -> bytes:
    return struct.pack(">I", len(data)) + tag + data + struct.pack(">I", zlib.crc32(tag + data) & 0xFFFFFFFF)


def build_png(width: int, height: int, color_type: int, depth: int, rows: Sequence[bytes],
              plte: Optional[bytes] = None, trns: Optional[bytes] = None,
              phys: Optional[Tuple[int, int, int]] = None, interlace: int = 0,
              idat_parts: int = 1) -> bytes:
    """PNG from raw scanlines (filter type 0 is prepended to each row)."""
    raw = b"".join(b"\x00" + row for row in rows)
    compressed = zlib.compress(raw, 9)

    out = bytearray(b"\x89PNG\r\n\x1a\n")
    out += png_chunk(b"IHDR", struct.pack(">IIBBBBB", width, height, depth, color_type, 0, 0, interlace))
    if phys is not None:
        out += png_chunk(b"pHYs", struct.pack(">IIB", *phys))
    if plte is not None:
        out += png_chunk(b"PLTE", plte)
    if trns is not None:
        out += png_chunk(b"tRNS", trns)
    step = max(1, -(-len(compressed) // idat_parts))
    for i in range(0, len(compressed), step):
        out += png_chunk(b"IDAT", compressed[i:i + step])
    out += png_chunk(b"IEND", b"")
    return bytes(out)


def jp2_box(tag: bytes, body: bytes) -> bytes:
    return struct.pack(">I", len(body) + 8) + tag + body


def build_jp2(width: int, height: int, components: int = 3, depth: int = 8,
              enum_cs: int = 16, extended_ihdr: bool = False) -> bytes:
    """JP2 container headers followed by a dummy codestream box."""
    ihdr_body = struct.pack(">IIHBBBB", height, width, components, depth - 1, 7, 0, 0)
    if extended_ihdr:
        ihdr = struct.pack(">I", 1) + b"ihdr" + struct.pack(">Q", len(ihdr_body) + 16) + ihdr_body
    else:
        ihdr = jp2_box(b"ihdr", ihdr_body)
    colr = jp2_box(b"colr", struct.pack(">BBBI", 1, 0, 0, enum_cs))
    return (
        b"\x00\x00\x00\x0cjP  \r\n\x87\n"
        + jp2_box(b"ftyp", b"jp2 " + struct.pack(">I", 0) + b"jp2 ")
        + jp2_box(b"jp2h", ihdr + colr)
        + jp2_box(b"jp2c", b"\xff\x4f\xff\x51" + b"\x00" * 16)
    )


def text_page(size=(400, 200), lines=("Hello world",), mode="1") -> Image.Image:
    """A page with black bars standing in for text lines."""
    img = Image.new("L", size, 255)
    draw = ImageDraw.Draw(img)
    for i, _ in enumerate(lines):
        top = 30 + i * 60
        draw.rectangle([40, top, size[0] - 40, top + 30], fill=0)
    return img.convert(mode) if mode != "L" else img


HOCR_TEMPLATE = """<!DOCTYPE html>
<html xmlns="http://www.w3.org/1999/xhtml">
<head>
<meta http-equiv="Content-Type" content="text/html; charset={charset}" />
<title>ocr</title>
</head>
<body>
<div class="ocr_page" title="bbox 0 0 400 200">
{lines}
</div>
</body>
</html>
"""


def hocr_document(lines: Sequence[str], charset: str = "utf-8") -> str:
    return HOCR_TEMPLATE.format(charset=charset, lines="\n".join(lines))


def hocr_line(words: Sequence[Tuple[str, Tuple[int, int, int, int]]]) -> str:
    x0 = min(b[0] for _, b in words)
    y0 = min(b[1] for _, b in words)
    x1 = max(b[2] for _, b in words)
    y1 = max(b[3] for _, b in words)
    spans = " ".join(
        f'<span class="ocrx_word" title="bbox {b[0]} {b[1]} {b[2]} {b[3]}">{w}</span>'
        for w, b in words
    )
    return f'<span class="ocr_line" title="bbox {x0} {y0} {x1} {y1}">{spans}</span>'


@pytest.fixture()
def tiff_factory():
    return build_tiff


@pytest.fixture()
def png_factory():
    return build_png


@pytest.fixture()
def jp2_factory():
    return build_jp2


@pytest.fixture()
def hocr_factory():
    def factory(lines, charset="utf-8"):
        return hocr_document([hocr_line(words) for words in lines], charset)
    return factory


@pytest.fixture()
def g4_page(tmp_path: Path):
    """Write a bilevel single-strip G4 TIFF page and return its path."""
    def factory(name="page1.tif", size=(400, 200), dpi=(100, 100), lines=("Hello world",)):
        path = tmp_path / name
        path.write_bytes(to_group4_tiff(text_page(size, lines), dpi=dpi))
        return path
    return factory


@pytest.fixture()
def jpeg_bytes():
    def factory(size=(64, 48), mode="RGB", dpi=(150, 150)):
        buffer = io.BytesIO()
        Image.new(mode, size, "gray").save(buffer, format="JPEG", dpi=dpi)
        return buffer.getvalue()
    return factory


@pytest.fixture()
def page_image():
    return text_page
