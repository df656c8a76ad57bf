"""
labels.py - Page label ranges.

A label specification is a ';'-separated list of ranges:

    <first page>:<prefix>%<start><style>

where first page is a 0-based physical page index, and everything after the
colon is optional. Styles: D (decimal), R/r (upper/lower roman), A/a
(upper/lower letters). Example for two title pages, 16 roman pages and
arabic numbering continuing from 17:

    0:Title %D;2:%R;18:%17D
"""

import logging
import re
from dataclasses import dataclass
from typing import List, Optional

from .errors import LabelSpecError
from .pdf_objects import Name, String, doc_string

logger = logging.getLogger(__name__)

LABEL_STYLES = "DRrAa"

_FORMAT_RE = re.compile(r"([^%]*)%?(\d*)([DRrAa]?)")

ROMAN_NUMERALS = [
    (1000, "M"), (900, "CM"), (500, "D"), (400, "CD"),
    (100, "C"), (90, "XC"), (50, "L"), (40, "XL"),
    (10, "X"), (9, "IX"), (5, "V"), (4, "IV"), (1, "I"),
]


@dataclass
class PageLabelRange:
    first: int
    prefix: Optional[str] = None
    start: Optional[int] = None
    style: Optional[str] = None

    @property
    def start_value(self) -> int:
        return self.start if self.start is not None else 1


def parse_page_labels(spec: str) -> List[PageLabelRange]:
    """Parse a label specification string into ranges sorted by first page."""
    ranges = []
    for descr in spec.split(";"):
        if not descr.strip():
            continue
        fields = descr.split(":", 1)
        if not re.fullmatch(r"\s*\d+\s*", fields[0]):
            raise LabelSpecError(f"Invalid page label range {descr!r}: no first page number")

        rng = PageLabelRange(first=int(fields[0]))
        if len(fields) > 1:
            m = _FORMAT_RE.match(fields[1])
            prefix, start, style = m.groups()
            rng.prefix = prefix or None
            rng.start = int(start) if start else None
            rng.style = style or None
            if rng.start is not None and rng.start < 1:
                raise LabelSpecError(f"Invalid page label range {descr!r}: numbering must start at 1 or above")
        ranges.append(rng)

    ranges.sort(key=lambda r: r.first)
    return ranges


def to_roman(num: int) -> str:
    out = []
    for value, numeral in ROMAN_NUMERALS:
        while num >= value:
            out.append(numeral)
            num -= value
    return "".join(out)


def to_letters(num: int) -> str:
    """Bijective base-26: 1 -> A, 26 -> Z, 27 -> AA."""
    out = []
    while num > 0:
        num, rem = divmod(num - 1, 26)
        out.append(chr(ord("A") + rem))
    return "".join(reversed(out))


def styled(num: int, style: Optional[str]) -> str:
    if style == "R":
        return to_roman(num)
    if style == "r":
        return to_roman(num).lower()
    if style == "A":
        return to_letters(num)
    if style == "a":
        return to_letters(num).lower()
    return str(num)


def page_label(rng: PageLabelRange, index: int) -> str:
    """Label of the page at a 0-based physical index within rng."""
    number = index - rng.first + rng.start_value
    text = styled(number, rng.style) if rng.style else ""
    return (rng.prefix or "") + text


def range_for(ranges: List[PageLabelRange], index: int) -> Optional[PageLabelRange]:
    found = None
    for rng in ranges:
        if rng.first > index:
            break
        found = rng
    return found


def label_for(ranges: List[PageLabelRange], index: int) -> str:
    """Label of a page; pages before the first range keep their 1-based number."""
    rng = range_for(ranges, index)
    if rng is None:
        return str(index + 1)
    return page_label(rng, index)


def _prefix_string(rng: PageLabelRange) -> String:
    value = doc_string(rng.prefix)
    if value.data.startswith(b"\xfe\xff") and not rng.style:
        # a trailing NUL keeps prefix-only Unicode labels displayable in Acrobat
        value = String(value.data + b"\x00\x00")
    return value


def number_tree(ranges: List[PageLabelRange]) -> dict:
    """/PageLabels number tree with one entry per range."""
    nums = []
    if ranges and ranges[0].first != 0:
        nums += [0, {"S": Name("D")}]

    for rng in ranges:
        entry = {}
        if rng.prefix:
            entry["P"] = _prefix_string(rng)
        if rng.style:
            entry["S"] = Name(rng.style)
        if rng.start is not None:
            entry["St"] = rng.start
        nums += [rng.first, entry]

    return {"Nums": nums}
