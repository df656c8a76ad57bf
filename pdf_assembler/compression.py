"""
compression.py - Re-encoding of images that cannot be embedded as they are.

Supports:
- CCITT G4 single-strip TIFF for stencils (1-bit masks)
- Flate PNG for everything else
- JPEG / JPEG2000 / PNG writers for generated background layers
"""

import io
import logging
from pathlib import Path
from typing import Optional, Tuple, Union

from PIL import Image, features

logger = logging.getLogger(__name__)

# TIFF tags
ROWS_PER_STRIP = 278
PHOTOMETRIC = 262

JPEG_QUALITY = 50
JP2_RATE = 64           # compression ratio for JPEG2000 backgrounds
JP2_RESOLUTIONS = 4

ImageSource = Union[str, Path, Image.Image]


def _open(source: ImageSource) -> Image.Image:
    if isinstance(source, Image.Image):
        return source
    with Image.open(source) as img:
        img.load()
        return img


def has_jpeg2000() -> bool:
    return bool(features.check("jpg_2000"))


def to_group4_tiff(source: ImageSource, dpi: Optional[Tuple[int, int]] = None) -> bytes:
    """
    Encode an image as a single-strip CCITT G4 TIFF.

    The result is written MinIsWhite, so black pixels come out as black
    runs in the fax data and decode to 0, the painted value of an image mask.
    """
    img = _open(source)
    if img.mode != "1":
        img = img.convert("L").convert("1", dither=Image.Dither.NONE)

    buffer = io.BytesIO()
    img.save(
        buffer,
        format="TIFF",
        compression="group4",
        tiffinfo={ROWS_PER_STRIP: img.height, PHOTOMETRIC: 0},
        dpi=dpi or img.info.get("dpi", (72, 72)),
    )
    data = buffer.getvalue()
    logger.debug(f"G4 stencil: {img.width}x{img.height}, {len(data):,} bytes")
    return data


def _flatten(img: Image.Image) -> Image.Image:
    """Drop alpha by compositing over white; reduce modes PNG cannot carry."""
    if img.mode == "P" and "transparency" in img.info:
        img = img.convert("RGBA")
    if img.mode in ("RGBA", "LA"):
        base = Image.new("RGB" if img.mode == "RGBA" else "L", img.size, "white")
        base.paste(img, mask=img.getchannel("A"))
        return base
    if img.mode == "CMYK":
        return img.convert("RGB")
    if img.mode in ("I", "I;16", "F"):
        return img.convert("L")
    return img


def to_png_bytes(source: ImageSource) -> bytes:
    """Encode as non-interlaced Flate PNG without an alpha channel."""
    img = _flatten(_open(source))
    buffer = io.BytesIO()
    img.save(buffer, format="PNG", compress_level=9, dpi=img.info.get("dpi", (72, 72)))
    return buffer.getvalue()


def background_format(fmt: str) -> str:
    """The background format that can actually be written with this Pillow build."""
    if fmt == "JP2" and not has_jpeg2000():
        logger.warning("This Pillow build has no JPEG2000 support, using JPEG for backgrounds instead")
        return "JPG"
    return fmt


def save_background(img: Image.Image, path: Path, fmt: str, dpi: int):
    """Write a background layer in JP2, JPG or PNG format."""
    img = _flatten(img)
    if fmt == "JP2":
        # no more decomposition levels than the smaller side allows
        levels = JP2_RESOLUTIONS
        while levels > 1 and min(img.size) < 2 ** (levels - 1):
            levels -= 1
        img.save(path, format="JPEG2000", quality_mode="rates",
                 quality_layers=[JP2_RATE], irreversible=True, num_resolutions=levels)
    elif fmt == "JPG":
        img.save(path, format="JPEG", quality=JPEG_QUALITY, dpi=(dpi, dpi))
    else:
        img.save(path, format="PNG", compress_level=9, dpi=(dpi, dpi))

    logger.debug(f"Wrote background {path} ({fmt}, {img.width}x{img.height})")
