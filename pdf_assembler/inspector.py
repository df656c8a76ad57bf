"""
inspector.py - Header-level inspection of TIFF, PNG, JPEG and JPEG2000 files.

Reads containers just far enough to learn:
- geometry and resolution (always normalized to pixels per inch)
- bit depth, color space, palette and transparency data
- compression method and where the compressed payload lives

Pixels are never decoded. The byte ranges in an ImageDescriptor point into
the same stream that was inspected; read_raw_data() concatenates them.
"""

import logging
import math
import struct
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Dict, Iterator, List, Optional, Tuple

from .errors import (
    IoFailure,
    MalformedJpeg,
    MalformedJpeg2000,
    MalformedPng,
    MalformedTiff,
    ParseError,
    UnknownColorSpace,
    UnrecognizedFormat,
)

logger = logging.getLogger(__name__)

TIFF_BIG_ENDIAN = b"MM\x00\x2a"
TIFF_LITTLE_ENDIAN = b"II\x2a\x00"
PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
JP2_SIGNATURE = b"\x00\x00\x00\x0cjP  \r\n\x87\n"
JPEG_SOI = b"\xff\xd8"

# TIFF tags used below
TAG_IMAGE_WIDTH = 0x0100
TAG_IMAGE_LENGTH = 0x0101
TAG_BITS_PER_SAMPLE = 0x0102
TAG_COMPRESSION = 0x0103
TAG_PHOTOMETRIC = 0x0106
TAG_STRIP_OFFSETS = 0x0111
TAG_SAMPLES_PER_PIXEL = 0x0115
TAG_ROWS_PER_STRIP = 0x0116
TAG_STRIP_BYTE_COUNTS = 0x0117
TAG_X_RESOLUTION = 0x011A
TAG_Y_RESOLUTION = 0x011B
TAG_PLANAR_CONFIG = 0x011C
TAG_RESOLUTION_UNIT = 0x0128
TAG_PREDICTOR = 0x013D
TAG_COLOR_MAP = 0x0140
TAG_EXTRA_SAMPLES = 0x0152
TAG_EXIF_IFD = 0x8769

REQUIRED_TIFF_TAGS = (
    TAG_IMAGE_WIDTH,
    TAG_IMAGE_LENGTH,
    TAG_PHOTOMETRIC,
    TAG_STRIP_OFFSETS,
    TAG_STRIP_BYTE_COUNTS,
)

TIFF_COMPRESSION = {
    1: "NoCompression",
    3: "CCITTFaxDecode",
    4: "CCITTFaxDecode",
    5: "LZWDecode",
    8: "FlateDecode",
    32946: "FlateDecode",
}

# field type -> (struct code, size); ASCII and UNDEFINED are read as byte strings
TIFF_FIELD_TYPES = {
    1: ("B", 1),
    2: ("ascii", 1),
    3: ("H", 2),
    4: ("I", 4),
    5: ("II", 8),
    6: ("b", 1),
    7: ("undefined", 1),
    8: ("h", 2),
    9: ("i", 4),
    10: ("ii", 8),
    11: ("f", 4),
    12: ("d", 8),
    13: ("I", 4),
}

PNG_CHUNKS = {
    b"IHDR", b"PLTE", b"IDAT", b"IEND", b"tRNS", b"cHRM",
    b"gAMA", b"iCCP", b"sBIT", b"sRGB", b"iTXt", b"tEXt",
    b"zTXt", b"bKGD", b"hIST", b"pHYs", b"sPLT", b"tIME",
}

JP2_BOXES = {
    b"ftyp", b"jp2h", b"ihdr", b"colr", b"res ", b"resc",
    b"resd", b"prfl", b"bpcc", b"pclr", b"cdef", b"jp2i",
}

JPEG_SOF_MARKERS = set(range(0xC0, 0xC4)) | set(range(0xC5, 0xC8)) | \
    set(range(0xC9, 0xCC)) | set(range(0xCD, 0xD0))

# markers which carry no length field
JPEG_STANDALONE_MARKERS = {0x01} | set(range(0xD0, 0xD9))


@dataclass
class ImageDescriptor:
    """Everything the assembler needs to know about one image."""
    format: Optional[str] = None          # TIFF, PNG, JPEG or JPEG2000
    width: Optional[int] = None
    height: Optional[int] = None
    x_dpi: int = 72
    y_dpi: int = 72
    depth: Optional[int] = None
    cspace: Optional[str] = None          # DeviceGray, DeviceRGB, DeviceCMYK, Indexed
    components: Optional[int] = None
    palette: Optional[List[Tuple[int, int, int]]] = None
    trans: Optional[List[int]] = None
    compression: Optional[str] = None
    data_ranges: List[Tuple[int, int]] = field(default_factory=list)
    tags: Optional[Dict[int, list]] = None
    next_offset: int = 0
    interlaced: bool = False
    alpha: bool = False

    @property
    def usable(self) -> bool:
        return self.width is not None

    @property
    def whole_file(self) -> bool:
        """JPEG and JPEG2000 payloads are the file itself."""
        return self.format in ("JPEG", "JPEG2000")

    def tag(self, code: int, default=None):
        """First value of a TIFF/EXIF tag, or default."""
        if self.tags and self.tags.get(code):
            return self.tags[code][0]
        return default


class _Reader:
    """Bounds-checked cursor over an in-memory container."""

    def __init__(self, data: bytes, error=ParseError):
        self.data = data
        self.pos = 0
        self.error = error

    def __len__(self):
        return len(self.data)

    def seek(self, pos: int):
        if pos < 0 or pos > len(self.data):
            raise self.error(f"offset {pos} is outside the file")
        self.pos = pos

    def skip(self, count: int):
        self.seek(self.pos + count)

    def read(self, count: int) -> bytes:
        chunk = self.data[self.pos:self.pos + count]
        if len(chunk) != count:
            raise self.error(f"unexpected end of data at offset {self.pos}")
        self.pos += count
        return chunk

    def unpack(self, fmt: str):
        return struct.unpack(fmt, self.read(struct.calcsize(fmt)))

    def byte(self) -> Optional[int]:
        """Next byte, or None at natural end of data."""
        if self.pos >= len(self.data):
            return None
        value = self.data[self.pos]
        self.pos += 1
        return value


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _cm_to_inch(value) -> int:
    return _round_half_up(value * 2.54)


def _check_resolution(desc: ImageDescriptor):
    """Resolutions that round to zero or below fall back to 72 dpi."""
    if desc.x_dpi <= 0 or desc.y_dpi <= 0:
        logger.warning(f"Unusable resolution {desc.x_dpi}x{desc.y_dpi}, assuming 72 dpi")
        desc.x_dpi = desc.y_dpi = 72


# ---------------------------------------------------------------- TIFF

def _tiff_values(reader: _Reader, order: str, type_code: int, count: int, raw: bytes) -> list:
    code, size = TIFF_FIELD_TYPES[type_code]
    total = size * count

    if total > 4:
        (pointer,) = struct.unpack(order + "I", raw)
        saved = reader.pos
        reader.seek(pointer)
        payload = reader.read(total)
        reader.seek(saved)
    else:
        payload = raw[:total]

    if code in ("ascii", "undefined"):
        if code == "ascii":
            return [payload.rstrip(b"\x00 ").decode("latin-1")]
        return [payload]

    if code in ("II", "ii"):
        pairs = struct.unpack(order + code[0] * (count * 2), payload)
        values = []
        for num, den in zip(pairs[0::2], pairs[1::2]):
            if den == 0:
                raise MalformedTiff("malformed TIFF: rational value with zero denominator")
            # integer quotient, fractional part deliberately dropped
            values.append(num // den)
        return values

    return list(struct.unpack(order + code * count, payload))


def _parse_ifd(reader: _Reader, order: str, offset: int) -> Tuple[Dict[int, list], int]:
    """Parse one IFD. Returns (tags, next IFD offset)."""
    reader.seek(offset)
    (num_entries,) = reader.unpack(order + "H")

    tags: Dict[int, list] = {}
    for _ in range(num_entries):
        tag, type_code, count = reader.unpack(order + "HHI")
        if type_code not in TIFF_FIELD_TYPES:
            raise MalformedTiff(f"malformed TIFF: could not read an IFD entry (tag {tag:#06x}, type {type_code})")
        raw = reader.read(4)
        tags[tag] = _tiff_values(reader, order, type_code, count, raw)

    # a missing next-IFD pointer ends the chain
    next_offset = 0
    if reader.pos + 4 <= len(reader):
        (next_offset,) = reader.unpack(order + "I")
    return tags, next_offset


def _examine_tiff(reader: _Reader, desc: ImageDescriptor, offset: Optional[int] = None,
                  standalone: bool = True):
    signature = reader.data[:4]
    if signature == TIFF_BIG_ENDIAN:
        order = ">"
    elif signature == TIFF_LITTLE_ENDIAN:
        order = "<"
    else:
        raise MalformedTiff("malformed TIFF: no TIFF signature")

    if offset is None:
        reader.seek(4)
        (offset,) = reader.unpack(order + "I")

    tags, next_offset = _parse_ifd(reader, order, offset)

    if standalone:
        missing = [t for t in REQUIRED_TIFF_TAGS if not tags.get(t)]
        if missing:
            raise MalformedTiff(
                "malformed TIFF: a required tag is missing ("
                + ", ".join(f"{t:#06x}" for t in missing) + ")"
            )

        desc.width = tags[TAG_IMAGE_WIDTH][0]
        desc.height = tags[TAG_IMAGE_LENGTH][0]
        desc.data_ranges = list(zip(tags[TAG_STRIP_OFFSETS], tags[TAG_STRIP_BYTE_COUNTS]))

        photometric = tags[TAG_PHOTOMETRIC][0]
        if photometric in (0, 1):
            desc.cspace = "DeviceGray"
        elif photometric == 3:
            desc.cspace = "Indexed"
        elif photometric == 5:
            desc.cspace = "DeviceCMYK"
        else:
            desc.cspace = "DeviceRGB"

        if photometric == 3 and TAG_COLOR_MAP in tags:
            cmap = tags[TAG_COLOR_MAP]
            n = len(cmap) // 3
            desc.palette = [
                (cmap[i] // 256, cmap[i + n] // 256, cmap[i + 2 * n] // 256)
                for i in range(n)
            ]

        desc.depth = tags[TAG_BITS_PER_SAMPLE][0] if TAG_BITS_PER_SAMPLE in tags else 1
        desc.components = tags[TAG_SAMPLES_PER_PIXEL][0] if TAG_SAMPLES_PER_PIXEL in tags else 1
        desc.alpha = TAG_EXTRA_SAMPLES in tags

        if TAG_COMPRESSION in tags:
            desc.compression = TIFF_COMPRESSION.get(tags[TAG_COMPRESSION][0])
        else:
            desc.compression = "NoCompression"

        desc.next_offset = next_offset

    if TAG_EXIF_IFD in tags:
        exif_tags, _ = _parse_ifd(reader, order, tags[TAG_EXIF_IFD][0])
        tags.update(exif_tags)

    if TAG_X_RESOLUTION in tags and TAG_Y_RESOLUTION in tags:
        desc.x_dpi = tags[TAG_X_RESOLUTION][0]
        desc.y_dpi = tags[TAG_Y_RESOLUTION][0]
        if tags.get(TAG_RESOLUTION_UNIT, [None])[0] == 3:
            desc.x_dpi = _cm_to_inch(desc.x_dpi)
            desc.y_dpi = _cm_to_inch(desc.y_dpi)

    desc.tags = tags


# ---------------------------------------------------------------- PNG

def _examine_png(reader: _Reader, desc: ImageDescriptor):
    reader.seek(16)
    (desc.width, desc.height, desc.depth, color_type,
     compression, filter_method, interlace) = reader.unpack(">IIBBBBB")

    if compression == 0 and filter_method == 0:
        desc.compression = "FlateDecode"
    if color_type in (0, 4):
        desc.cspace = "DeviceGray"
    elif color_type == 3:
        desc.cspace = "Indexed"
    else:
        desc.cspace = "DeviceRGB"
    desc.components = {0: 1, 2: 3, 3: 1, 4: 2, 6: 4}.get(color_type, 3)
    desc.alpha = color_type in (4, 6)
    desc.interlaced = interlace != 0

    # Slide an 8-byte window (length + chunk type) over the rest of the file
    data = reader.data
    start = reader.pos
    while True:
        if reader.byte() is None:
            break
        pos = reader.pos
        if pos - start < 8 or data[pos - 4:pos] not in PNG_CHUNKS:
            continue

        chunk = data[pos - 4:pos]
        (length,) = struct.unpack(">I", data[pos - 8:pos - 4])

        if chunk == b"PLTE":
            body = reader.read(length)
            desc.palette = [tuple(body[i:i + 3]) for i in range(0, length - length % 3, 3)]
        elif chunk == b"IDAT":
            desc.data_ranges.append((pos, length))
            reader.skip(length + 4)
        elif chunk == b"pHYs":
            x_dpm, y_dpm, unit = reader.unpack(">IIB")
            # unit 0 only gives the aspect ratio
            if unit == 1:
                desc.x_dpi = _round_half_up((x_dpm // 100) * 2.54)
                desc.y_dpi = _round_half_up((y_dpm // 100) * 2.54)
        elif chunk == b"tRNS":
            if desc.cspace == "Indexed":
                desc.trans = list(reader.read(length))
            elif desc.cspace == "DeviceGray":
                desc.trans = list(reader.unpack(">H"))
            else:
                desc.trans = list(reader.unpack(">HHH"))
        elif chunk == b"IEND":
            break
        else:
            reader.skip(length + 4)

    if not desc.data_ranges:
        raise MalformedPng("malformed PNG: no image data")


# ---------------------------------------------------------------- JPEG

def _jpeg_next_marker(reader: _Reader) -> Optional[int]:
    c = reader.byte()
    while c is not None and c != 0xFF:
        c = reader.byte()
    while c == 0xFF:
        c = reader.byte()
    return c


def _jpeg_segment(reader: _Reader) -> bytes:
    (length,) = reader.unpack(">H")
    if length < 2:
        raise MalformedJpeg(f"malformed JPEG: bad segment length {length}")
    return reader.read(length - 2)


def _examine_jpeg(reader: _Reader, desc: ImageDescriptor):
    reader.seek(2)

    while True:
        marker = _jpeg_next_marker(reader)
        if marker is None or marker in (0xD9, 0xDA):
            break

        if marker in JPEG_SOF_MARKERS:
            length, depth, height, width, components = reader.unpack(">HBHHB")
            if length != 8 + components * 3:
                raise MalformedJpeg("malformed JPEG: could not read a SOF header")
            reader.skip(components * 3)
            desc.depth, desc.height, desc.width = depth, height, width
            desc.components = components
            if components == 1:
                desc.cspace = "DeviceGray"
            elif components == 4:
                desc.cspace = "DeviceCMYK"
            else:
                desc.cspace = "DeviceRGB"
        elif marker in JPEG_STANDALONE_MARKERS:
            continue
        elif marker == 0xE0:
            segment = _jpeg_segment(reader)
            if not segment.startswith(b"JFIF\x00"):
                continue
            if len(segment) < 12:
                raise MalformedJpeg("malformed JPEG: could not read JFIF data")
            units, x_res, y_res = struct.unpack(">BHH", segment[7:12])
            if units == 1:
                desc.x_dpi, desc.y_dpi = x_res, y_res
            elif units == 2:
                desc.x_dpi, desc.y_dpi = _cm_to_inch(x_res), _cm_to_inch(y_res)
        elif marker == 0xE1:
            segment = _jpeg_segment(reader)
            if segment.startswith(b"Exif\x00\x00"):
                exif = _Reader(segment[6:], MalformedTiff)
                try:
                    _examine_tiff(exif, desc, standalone=False)
                except ParseError as e:
                    logger.warning(f"Ignoring unreadable EXIF block: {e}")
        else:
            _jpeg_segment(reader)

    if desc.width is None:
        raise MalformedJpeg("malformed JPEG: no frame header found")


# ---------------------------------------------------------------- JPEG2000

def _examine_jp2_boxes(reader: _Reader, desc: ImageDescriptor) -> bool:
    """Scan boxes until colr is read. Returns True when the scan was stopped."""
    data = reader.data
    start = reader.pos
    while True:
        if reader.byte() is None:
            return False
        pos = reader.pos
        if pos - start < 8 or data[pos - 4:pos] not in JP2_BOXES:
            continue

        box = data[pos - 4:pos]
        (length,) = struct.unpack(">I", data[pos - 8:pos - 4])
        if length in (0, 1):
            (length,) = reader.unpack(">Q")
            length -= 16
        else:
            length -= 8
        if length < 0:
            raise MalformedJpeg2000(f"malformed JPEG2000: bad length for box {box!r}")

        if box == b"jp2h":
            _examine_jp2_boxes(_Reader(reader.read(length), MalformedJpeg2000), desc)
            return True
        elif box == b"ihdr":
            if length != 14:
                raise MalformedJpeg2000(f"malformed JPEG2000: ihdr box has length {length}, expected 14")
            desc.height, desc.width, desc.components, bpc = reader.unpack(">IIHB")
            reader.skip(3)
            desc.depth = (bpc & 0x7F) + 1
        elif box == b"colr":
            body = reader.read(length)
            if desc.cspace is not None:
                continue
            if body[:1] == b"\x01":
                if len(body) < 7:
                    raise MalformedJpeg2000(f"malformed JPEG2000: colr box has length {len(body)}, expected at least 7")
                (enum_cs,) = struct.unpack(">I", body[3:7])
                if enum_cs == 16:
                    desc.cspace = "DeviceRGB"
                elif enum_cs == 17:
                    desc.cspace = "DeviceGray"
                else:
                    raise UnknownColorSpace(f"Malformed JPEG2000: unknown colorspace {enum_cs}")
            return True
        else:
            reader.skip(length)


def _examine_jp2(reader: _Reader, desc: ImageDescriptor):
    reader.seek(len(JP2_SIGNATURE))
    _examine_jp2_boxes(reader, desc)
    if desc.width is None:
        raise MalformedJpeg2000("malformed JPEG2000: no image header box")


# ---------------------------------------------------------------- public API

def inspect_bytes(data: bytes) -> ImageDescriptor:
    """Inspect an image held in memory."""
    desc = ImageDescriptor()

    if data[:2] == JPEG_SOI:
        desc.format = "JPEG"
        desc.compression = "DCTDecode"
        _examine_jpeg(_Reader(data, MalformedJpeg), desc)
    elif data[:4] in (TIFF_BIG_ENDIAN, TIFF_LITTLE_ENDIAN):
        desc.format = "TIFF"
        _examine_tiff(_Reader(data, MalformedTiff), desc)
    elif data[:8] == PNG_SIGNATURE:
        desc.format = "PNG"
        _examine_png(_Reader(data, MalformedPng), desc)
    elif data[:12] == JP2_SIGNATURE:
        desc.format = "JPEG2000"
        desc.compression = "JPXDecode"
        _examine_jp2(_Reader(data, MalformedJpeg2000), desc)
    else:
        raise UnrecognizedFormat("File format not recognized")

    _check_resolution(desc)

    logger.debug(
        f"Inspected {desc.format}: {desc.width}x{desc.height}, "
        f"{desc.x_dpi}x{desc.y_dpi} dpi, depth {desc.depth}, {desc.cspace}, {desc.compression}"
    )
    return desc


def inspect(stream: BinaryIO) -> ImageDescriptor:
    """
    Inspect the image in a seekable binary stream.

    Raises a ParseError subclass when the container is not understood.
    """
    stream.seek(0)
    return inspect_bytes(stream.read())


def inspect_file(path) -> ImageDescriptor:
    """Inspect an image file. OSError is reported as IoFailure."""
    try:
        data = Path(path).read_bytes()
    except OSError as e:
        raise IoFailure(f"Could not read data from {path}: {e}") from e
    return inspect_bytes(data)


def next_image(stream: BinaryIO, desc: ImageDescriptor) -> Optional[ImageDescriptor]:
    """Descriptor of the image following desc in a multi-image TIFF, if any."""
    if desc.format != "TIFF" or desc.next_offset <= 0:
        return None
    stream.seek(0)
    nxt = ImageDescriptor(format="TIFF")
    _examine_tiff(_Reader(stream.read(), MalformedTiff), nxt, offset=desc.next_offset)
    _check_resolution(nxt)
    return nxt


def iter_images(stream: BinaryIO) -> Iterator[ImageDescriptor]:
    """Yield a descriptor for every image in the stream, first to last."""
    desc = inspect(stream)
    seen = set()
    while desc is not None:
        yield desc
        if desc.next_offset in seen:
            logger.warning(f"IFD chain loops back to offset {desc.next_offset}")
            return
        seen.add(desc.next_offset)
        desc = next_image(stream, desc)


def read_raw_data(stream: BinaryIO, desc: ImageDescriptor) -> bytes:
    """
    Compressed payload of an inspected image.

    JPEG and JPEG2000 are returned verbatim; for TIFF and PNG the data ranges
    are concatenated with all headers stripped.
    """
    if not desc.usable:
        raise ValueError("The image has not been properly initialized")

    stream.seek(0)
    if desc.whole_file:
        return stream.read()

    error = MalformedPng if desc.format == "PNG" else MalformedTiff
    chunks = []
    for offset, length in desc.data_ranges:
        stream.seek(offset)
        chunk = stream.read(length)
        if len(chunk) != length:
            raise error(f"data block at {offset} is truncated ({len(chunk)} of {length} bytes)")
        chunks.append(chunk)
    return b"".join(chunks)


def read_raw_file(path, desc: ImageDescriptor) -> bytes:
    try:
        with open(path, "rb") as f:
            return read_raw_data(f, desc)
    except OSError as e:
        raise IoFailure(f"Could not read data from {path}: {e}") from e
