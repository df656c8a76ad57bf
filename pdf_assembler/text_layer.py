"""
text_layer.py - Invisible OCR text from hOCR markup.

Each OCR line becomes one text object positioned over the line's bounding
box. Glyphs are drawn in render mode 3 (invisible) and stretched so that the
text covers the same width as the detected ink, which keeps selection and
search highlights aligned with the scan.
"""

import logging
import re
from pathlib import Path
from typing import List, Optional, Tuple

from bs4 import BeautifulSoup
from bs4.dammit import EncodingDetector

from .errors import InvalidUtf8Sequence, IoFailure
from .fonts import TIMES_HEADER, FontEncoder, is_escaped_byte, line_width

logger = logging.getLogger(__name__)

FONT_SIZE = 10

LINE_CLASSES = ["ocr_line", "ocr_caption", "ocr_header", "ocr_textfloat"]

SOFT_HYPHEN = "\u00ad"

_BBOX_RE = re.compile(r"bbox((?:\s+\d+){4})")
_CHAR_BBOXES_RE = re.compile(r"x_bboxes([-\s\d]+)")

BBox = Tuple[float, float, float, float]
Unit = Tuple[str, BBox]


def load_hocr(path) -> BeautifulSoup:
    """
    Parse an hOCR file, honoring its declared character set.

    Bytes that are not valid in that character set survive as lone
    surrogates and are reported when the text layer is composed.
    """
    path = Path(path)
    try:
        raw = path.read_bytes()
    except OSError as e:
        raise IoFailure(f"Could not read hOCR file {path}: {e}") from e

    encoding = EncodingDetector.find_declared_encoding(raw, is_html=True) or "utf-8"
    try:
        text = raw.decode(encoding, errors="surrogateescape")
    except LookupError:
        logger.warning(f"{path}: unknown character set {encoding!r}, assuming UTF-8")
        text = raw.decode("utf-8", errors="surrogateescape")
    return BeautifulSoup(text, "html.parser")


def element_bbox(element, xscale: float, yscale: float) -> Optional[BBox]:
    """Scaled (x0, y0, x1, y1) from an element's title attribute, or None."""
    title = element.get("title")
    if not title:
        return None
    m = _BBOX_RE.search(title)
    if not m:
        return None
    x0, y0, x1, y1 = (int(v) for v in m.group(1).split())
    return (x0 * xscale, y0 * yscale, x1 * xscale, y1 * yscale)


def element_text(element) -> str:
    return element.get_text().strip()


def _words_from_char_boxes(text: str, coords: List[int], xscale: float, yscale: float) -> List[Unit]:
    """
    Rebuild words from per-character boxes (x_bboxes).

    A character whose box has negative coordinates is a word separator.
    Some hOCR producers strip whitespace from the line text while keeping
    the separator's box; when a separator box meets a non-space character,
    that character is assumed to start the next word and takes the box
    after the separator.

    Returns an empty list when text and boxes cannot be matched up, which
    makes the caller fall back to the whole line.
    """
    if len(text) > len(coords) // 4:
        return []

    def box(i):
        if i * 4 + 3 >= len(coords):
            return None
        x0, y0, x1, y1 = coords[i * 4:i * 4 + 4]
        return [x0 * xscale, y0 * yscale, x1 * xscale, y1 * yscale]

    units: List[Unit] = []
    word = ""
    bbox = [-1.0, -1.0, -1.0, -1.0]
    i = 0
    for char in text:
        cbox = box(i)
        if cbox is None:
            return []

        if cbox[0] >= 0:
            bbox[0] = cbox[0] if cbox[0] < bbox[0] or bbox[0] < 0 else bbox[0]
            bbox[1] = cbox[1] if cbox[1] < bbox[1] or bbox[1] < 0 else bbox[1]
            bbox[2] = cbox[2] if cbox[2] > bbox[2] or bbox[2] < 0 else bbox[2]
            bbox[3] = cbox[3] if cbox[3] > bbox[3] or bbox[3] < 0 else bbox[3]
            word += char
        else:
            units.append((word, tuple(bbox)))
            bbox = [-1.0, -1.0, -1.0, -1.0]
            if char.isspace():
                word = ""
            else:
                word = char
                i += 1
                nbox = box(i)
                if nbox is None:
                    return []
                bbox = nbox
        i += 1

    if word:
        units.append((word, tuple(bbox)))
    return units


def extract_units(line, line_bbox: BBox, xscale: float, yscale: float) -> List[Unit]:
    """Positioned text units of one OCR line: words if available, else the line."""
    units: List[Unit] = []

    words = line.find_all(class_="ocrx_word")
    if words:
        for word in words:
            bbox = element_bbox(word, xscale, yscale)
            if bbox is None or bbox == (0, 0, 0, 0):
                continue
            units.append((element_text(word), bbox))
    else:
        cinfo = line.find(class_="ocr_cinfo")
        if cinfo is not None and cinfo.get("title"):
            m = _CHAR_BBOXES_RE.search(cinfo["title"])
            if m:
                coords = [int(v) for v in m.group(1).split()]
                units = _words_from_char_boxes(element_text(line), coords, xscale, yscale)

    if not units:
        text = element_text(line)
        if text:
            units.append((text, line_bbox))

    if units and units[-1][0].endswith("-"):
        text, bbox = units[-1]
        units[-1] = (text[:-1] + SOFT_HYPHEN, bbox)

    return [u for u in units if u[0]]


def _checked(char: str) -> str:
    if is_escaped_byte(char):
        raise InvalidUtf8Sequence(bytes([ord(char) - 0xDC00]))
    return char


def compose_text_layer(soup, page_height: float, xscale: float, yscale: float,
                       encoder: FontEncoder) -> str:
    """
    Content stream fragment drawing all OCR lines of a page as invisible text.

    Fonts are referenced as /Fnt1, /Fnt2, ... matching encoder.buckets.
    """
    out = [" BT 3 Tr "]
    descent = TIMES_HEADER["Descent"] * FONT_SIZE / 1000.0
    current = None

    for line in soup.find_all(class_=LINE_CLASSES):
        lbbox = element_bbox(line, xscale, yscale)
        if lbbox is None or lbbox[2] - lbbox[0] <= 0 or lbbox[3] - lbbox[1] <= 0:
            continue
        units = extract_units(line, lbbox, xscale, yscale)
        if not units:
            continue

        ink_width = sum(bbox[2] - bbox[0] for _, bbox in units)
        text_width = line_width("".join(text for text, _ in units), FONT_SIZE)
        if ink_width <= 0 or text_width <= 0:
            logger.debug(f"Skipping OCR line without measurable width: {element_text(line)!r}")
            continue
        ratio = ink_width / text_width

        out.append(
            f"{ratio:f} 0 0 {ratio:f} {lbbox[0]:f} "
            f"{page_height - lbbox[3] - descent * ratio:f} Tm "
        )

        pos = lbbox[0]
        in_text = False
        for i, (text, bbox) in enumerate(units):
            posdiff = 0
            if i > 0:
                posdiff = int((pos - bbox[0]) * 1000 / FONT_SIZE / ratio)
            pos = bbox[0] + line_width(text, FONT_SIZE) * ratio

            codes = ""
            for char in text:
                try:
                    char = _checked(char)
                except InvalidUtf8Sequence as e:
                    logger.warning(e.message)
                    char = "?"

                bucket, code = encoder.classify(char, prefer=current)
                if bucket != current:
                    if in_text:
                        if posdiff:
                            out.append(f"{posdiff} ")
                        if codes:
                            out.append(f"<{codes}> ")
                        out.append("] TJ ")
                    current = bucket
                    out.append(f"/Fnt{bucket + 1} {FONT_SIZE} Tf ")
                    codes = ""
                    posdiff = 0
                    in_text = False

                if not in_text:
                    out.append("[ ")
                    in_text = True
                codes += f"{code:02X}"

            if codes:
                if posdiff:
                    out.append(f"{posdiff} ")
                out.append(f"<{codes}> ")

        if in_text:
            out.append("] TJ ")

    out.append("ET ")
    return "".join(out)
