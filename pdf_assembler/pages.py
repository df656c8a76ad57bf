"""
pages.py - Collecting the files that make up each page.

A page starts from one scanned TIFF or PNG image. Depending on that image:
- bilevel: the file itself is the stencil
- indexed with few colors: one Group 4 stencil per color, <base>.<rrggbb>.tiff
- anything else: <base>.black.tiff stencil plus a <base>.bg.<fmt> background

Existing auxiliary files are reused unless force_update is set. Files lying
next to the scan are picked up as well: <base>.bg.* or <base>.sep.* as the
background layer, <base>.fg.* as the foreground layer (single stencil pages
only) and <base>.hocr / <base>.html as the OCR text.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from PIL import Image

from . import segmentation
from .compression import background_format, save_background, to_group4_tiff
from .errors import IoFailure, ParseError
from .inspector import ImageDescriptor, inspect_file, next_image
from .options import AssemblyOptions

logger = logging.getLogger(__name__)

INPUT_RE = re.compile(r"^([^.]*)\.(tiff?|png)$", re.IGNORECASE)

EXT_LOSSLESS = ["png", "tiff?"]
EXT_JPEG = ["jpe?g"]
EXT_JPEG2000 = ["jp2", "jpx"]

BLACK = (0.0, 0.0, 0.0)


@dataclass
class StencilSpec:
    """One bilevel mask painted with a single color."""
    path: Path
    rgb: Tuple[float, float, float] = BLACK
    created: bool = False
    jbig2_path: Optional[Path] = None
    jbig2_dict: Optional[Path] = None


@dataclass
class PageData:
    """Everything needed to build one PDF page."""
    source: Path
    basename: str
    width: int = 0
    height: int = 0
    x_dpi: int = 72
    y_dpi: int = 72
    kind: str = "bilevel"           # bilevel, indexed or mixed
    stencils: List[StencilSpec] = field(default_factory=list)
    bg_layer: Optional[Path] = None
    fg_layer: Optional[Path] = None
    bg_created: bool = False
    fg_created: bool = False
    hocr_path: Optional[Path] = None

    @property
    def directory(self) -> Path:
        return self.source.parent

    def created_files(self) -> List[Path]:
        """Auxiliary files generated for this page."""
        files = []
        if self.fg_created and self.fg_layer is not None:
            files.append(self.fg_layer)
        if self.bg_created and self.bg_layer is not None:
            files.append(self.bg_layer)
        files.extend(s.path for s in self.stencils if s.created)
        return files


def is_page_image(path) -> bool:
    return INPUT_RE.match(Path(path).name) is not None


def layer_extensions(bg_format: str) -> Tuple[List[str], List[str]]:
    """(all extensions in search order, preferred extensions) for layer files."""
    if bg_format == "JP2":
        return EXT_JPEG2000 + EXT_JPEG + EXT_LOSSLESS, list(EXT_JPEG2000)
    if bg_format == "JPG":
        return EXT_JPEG + EXT_JPEG2000 + EXT_LOSSLESS, list(EXT_JPEG)
    return EXT_LOSSLESS + EXT_JPEG2000 + EXT_JPEG, list(EXT_LOSSLESS)


def find_companion(directory: Path, basename: str, kinds: str, exts: List[str]) -> Optional[Path]:
    """First file named <basename>.<kind>.<ext>, trying extensions in order."""
    names = sorted(p.name for p in directory.iterdir() if p.is_file())
    for ext in exts:
        pattern = re.compile(rf"^{re.escape(basename)}\.({kinds})\.({ext})$", re.IGNORECASE)
        for name in names:
            if pattern.match(name):
                return directory / name
    return None


def _write_stencil(path: Path, mask, dpi: Tuple[int, int]):
    try:
        path.write_bytes(to_group4_tiff(segmentation.mask_to_image(mask, dpi), dpi=dpi))
    except OSError as e:
        raise IoFailure(f"Could not write stencil {path}: {e}") from e
    logger.debug(f"Wrote stencil {path}")


def _process_indexed(page: PageData, img: Image.Image, options: AssemblyOptions) -> int:
    layers = segmentation.split_indexed(img, options.max_colors)
    if not layers:
        return 0

    dpi = (page.x_dpi, page.y_dpi)
    for rgb, mask in layers:
        path = page.directory / f"{page.basename}.{rgb[0]:02x}{rgb[1]:02x}{rgb[2]:02x}.tiff"
        created = False
        if not path.exists() or options.force_update:
            _write_stencil(path, mask, dpi)
            created = True
        page.stencils.append(StencilSpec(
            path=path,
            rgb=(rgb[0] / 255.0, rgb[1] / 255.0, rgb[2] / 255.0),
            created=created,
        ))

    page.kind = "indexed"
    return len(layers)


def _process_mixed(page: PageData, img: Image.Image, desc: ImageDescriptor,
                   options: AssemblyOptions) -> int:
    stencil = StencilSpec(path=page.directory / f"{page.basename}.black.tiff")
    fmt = background_format(options.bg_format)
    bg_path = page.directory / f"{page.basename}.bg.{fmt.lower()}"

    image = None
    mask = None
    if not stencil.path.exists() or options.force_update or not bg_path.exists():
        image = segmentation.to_array(img)
        mask = segmentation.threshold_mask(segmentation.to_gray(image), options.threshold)

    if not stencil.path.exists() or options.force_update:
        _write_stencil(stencil.path, mask, (page.x_dpi, page.y_dpi))
        stencil.created = True

    if not bg_path.exists() or options.force_update:
        if options.force_grayscale or not segmentation.detect_color(image, mask):
            image = segmentation.to_gray(image)
        background = segmentation.create_background(image, mask)
        background = segmentation.resample(background, desc.x_dpi, options.bg_resolution)
        try:
            save_background(Image.fromarray(background), bg_path, fmt, options.bg_resolution)
        except OSError as e:
            raise IoFailure(f"Could not write background {bg_path}: {e}") from e
        page.bg_created = True

    page.stencils.append(stencil)
    page.bg_layer = bg_path
    page.kind = "mixed"
    return 1


def fill_stencils(page: PageData, desc: ImageDescriptor, options: AssemblyOptions) -> int:
    """Work out the stencils of a page; returns how many there are."""
    if desc.depth == 1 and desc.trans is None and desc.palette is None:
        page.stencils.append(StencilSpec(path=page.source))
        return 1

    try:
        with Image.open(page.source) as img:
            img.load()
            count = 0
            if desc.palette is not None:
                count = _process_indexed(page, img, options)
            if count == 0:
                count = _process_mixed(page, img, desc, options)
    except OSError as e:
        raise IoFailure(f"Could not read image {page.source}: {e}") from e
    return count


def add_supplementary_files(page: PageData, options: AssemblyOptions):
    exts, pref = layer_extensions(options.bg_format)

    if page.bg_layer is None:
        page.bg_layer = (find_companion(page.directory, page.basename, "bg|sep", pref)
                         or find_companion(page.directory, page.basename, "bg|sep", exts))

    if page.fg_layer is None and len(page.stencils) == 1:
        page.fg_layer = find_companion(page.directory, page.basename, "fg", exts)

    hocr = re.compile(rf"^{re.escape(page.basename)}\.(hocr|html?)$", re.IGNORECASE)
    for entry in sorted(page.directory.iterdir()):
        if entry.is_file() and hocr.match(entry.name):
            page.hocr_path = entry
            break


def prepare_page(path, options: AssemblyOptions) -> Optional[PageData]:
    """
    Inspect a scanned page and collect its stencils and companion files.

    Returns None for files whose name does not look like a page image.
    Inspection errors propagate; the page cannot be used without them.
    """
    path = Path(path)
    m = INPUT_RE.match(path.name)
    if not m:
        return None

    desc = inspect_file(path)
    page = PageData(source=path, basename=m.group(1), width=desc.width, height=desc.height)
    if options.stencil_resolution > 0:
        page.x_dpi = page.y_dpi = options.stencil_resolution
    else:
        page.x_dpi, page.y_dpi = desc.x_dpi, desc.y_dpi

    if fill_stencils(page, desc, options) == 0:
        return None

    logger.info(f"Prepared data for processing {path}")
    if desc.format == "TIFF":
        try:
            with open(path, "rb") as f:
                if next_image(f, desc) is not None:
                    logger.warning(f"{path} contains multiple images, but only the first one is going to be used")
        except ParseError as e:
            logger.warning(f"{path}: ignoring unreadable trailing image: {e.message}")

    add_supplementary_files(page, options)
    return page
