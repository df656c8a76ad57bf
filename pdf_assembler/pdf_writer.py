"""
pdf_writer.py - PDF assembly from prepared pages.

Each page is built from:
- one or more stencil masks (CCITT G4 or JBIG2), each painted in its color
- an optional foreground image, which then uses the first stencil as SMask
- an optional background image, drawn below everything else
- an optional invisible OCR text layer

Stencils and the foreground sit in the "Foreground" optional content group,
the background in "Background", so viewers can toggle the two layers.
Fonts, outline and page labels are added once all pages are known.
"""

import io
import logging
import struct
import sys
import zlib
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .compression import to_group4_tiff, to_png_bytes
from .errors import IoFailure, MalformedJbig2, ParseError
from .fonts import FONT_NAME, TIMES_HEADER, FontEncoder, glyph_names, glyph_widths, to_unicode_cmap
from .inspector import (
    TAG_COMPRESSION,
    TAG_PHOTOMETRIC,
    TAG_PLANAR_CONFIG,
    TAG_PREDICTOR,
    TAG_ROWS_PER_STRIP,
    ImageDescriptor,
    inspect_bytes,
    inspect_file,
    read_raw_data,
    read_raw_file,
)
from .labels import PageLabelRange, label_for, number_tree
from .metadata import creation_date
from .options import AssemblyOptions
from .outline import Outline
from .pages import PageData, StencilSpec
from .pdf_objects import Document, HexString, Name, PdfObject, Ref, String, doc_string, text_string
from .text_layer import compose_text_layer, load_hocr

logger = logging.getLogger(__name__)

PRODUCER = "pdf-assembler"

TAG_FILL_ORDER = 0x010A

# payload formats that can go into the file as they are
_DIRECT_TIFF_COMPRESSION = ("NoCompression", "FlateDecode", "LZWDecode")

JBIG2_HEADER_SIZE = 27

UNRESOLVED_COLOR = [0.75, 0.75, 0.75]


def _stencil_needs_reencode(desc: ImageDescriptor) -> bool:
    """Only single-strip G4 TIFFs written WhiteIsZero can be embedded as they are."""
    if desc.format != "TIFF" or desc.compression != "CCITTFaxDecode":
        return True
    return (
        desc.tag(TAG_COMPRESSION) != 4
        or desc.tag(TAG_PHOTOMETRIC) != 0
        or desc.tag(TAG_FILL_ORDER, 1) != 1
        or desc.tag(TAG_ROWS_PER_STRIP, desc.height) < desc.height
    )


def _image_needs_reencode(desc: ImageDescriptor) -> bool:
    if desc.format in ("JPEG", "JPEG2000"):
        return False
    if desc.cspace == "Indexed" and not desc.palette:
        return True
    if desc.format == "PNG":
        return desc.interlaced or desc.alpha or desc.compression != "FlateDecode"
    # TIFF
    if desc.compression not in _DIRECT_TIFF_COMPRESSION:
        return True
    if desc.tag(TAG_PHOTOMETRIC) not in (1, 2, 3, 5):
        return True
    if desc.tag(TAG_PLANAR_CONFIG, 1) != 1 or desc.alpha:
        return True
    if desc.compression != "NoCompression" and desc.tag(TAG_ROWS_PER_STRIP, desc.height) < desc.height:
        return True
    return False


def _indexed_color_space(palette: List[Tuple[int, int, int]]) -> list:
    rgb = any(r != g or r != b for r, g, b in palette)
    if rgb:
        table = bytes(c for entry in palette for c in entry)
    else:
        table = bytes(entry[0] for entry in palette)
    base = Name("DeviceRGB") if rgb else Name("DeviceGray")
    return [Name("Indexed"), base, len(palette) - 1, HexString(table)]


def _color_key_mask(desc: ImageDescriptor) -> Optional[list]:
    """/Mask array for PNG tRNS data, or None if it cannot be expressed as a color key."""
    if not desc.trans:
        return None
    if desc.cspace == "Indexed":
        clear = [i for i, alpha in enumerate(desc.trans) if alpha == 0]
        if not clear or clear != list(range(clear[0], clear[-1] + 1)):
            logger.debug(f"Palette transparency {desc.trans} has no color key equivalent")
            return None
        return [clear[0], clear[-1]]
    return [v for value in desc.trans for v in (value, value)]


class PDFWriter:
    """
    Assembles prepared pages into a layered PDF.

    Pages must be added in document order. The file is rendered by
    to_bytes() or save(); both finalize fonts, outline and page labels.
    """

    def __init__(
        self,
        options: Optional[AssemblyOptions] = None,
        labels: Optional[List[PageLabelRange]] = None,
        outline: Optional[Outline] = None,
        metadata: Optional[Dict[str, str]] = None,
        use_jbig2: bool = False,
        now: Optional[datetime] = None,
    ):
        self.options = options or AssemblyOptions()
        self.labels = labels or []
        self.outline = outline
        self.use_jbig2 = use_jbig2
        self.doc = Document()
        self.encoder = FontEncoder()

        self.page_ids: List[int] = []
        self.pages_by_key: Dict[str, int] = {}

        self._jbig2_dict_path: Optional[Path] = None
        self._jbig2_dict: Optional[PdfObject] = None
        self._font_dict: Optional[PdfObject] = None
        self._font_descriptor: Optional[PdfObject] = None
        self._finished = False

        self._build_prologue(metadata or {}, now)

    def _build_prologue(self, metadata: Dict[str, str], now: Optional[datetime]):
        doc = self.doc
        self.catalog = doc.add_new({
            "Type": Name("Catalog"),
            "PageLayout": Name(self.options.page_layout),
        })
        doc.root = self.catalog

        self.info = doc.add_new({
            "Creator": doc_string(PRODUCER),
            "Producer": doc_string(PRODUCER),
            "CreationDate": String(creation_date(now).encode("ascii")),
        })
        for key, value in metadata.items():
            self.info[key] = text_string(value)
        doc.info = self.info

        self.outlines = doc.add_new({"Type": Name("Outlines"), "Count": 0})
        self.catalog["Outlines"] = self.outlines.ref

        self.pages = doc.add_new({"Type": Name("Pages"), "Kids": [], "Count": 0})
        self.catalog["Pages"] = self.pages.ref

        creator = doc.add_new({
            "Subtype": Name("Artwork"),
            "Creator": doc_string(PRODUCER),
            "Feature": doc_string("Layers"),
        })
        self.oc_fore = doc.add_new({
            "Type": Name("OCG"),
            "Name": doc_string("Foreground"),
            "Usage": {"CreatorInfo": creator.ref},
            "Intent": [Name("View"), Name("Design")],
        })
        self.oc_back = doc.add_new({
            "Type": Name("OCG"),
            "Name": doc_string("Background"),
            "Usage": {"CreatorInfo": creator.ref},
            "Intent": [Name("View"), Name("Design")],
        })
        self.catalog["OCProperties"] = {
            "OCGs": [self.oc_fore.ref, self.oc_back.ref],
            "D": {
                "Intent": Name("View"),
                "BaseState": Name("ON"),
                "Order": [self.oc_fore.ref, self.oc_back.ref],
            },
        }

    # ------------------------------------------------------------ images

    def load_ccitt_stencil(self, path: Path, ocg: PdfObject) -> PdfObject:
        """Image mask from a bilevel file, re-encoded to single-strip G4 if needed."""
        desc = inspect_file(path)
        if _stencil_needs_reencode(desc):
            logger.debug(f"Re-encoding stencil {path} to CCITT G4")
            try:
                data = to_group4_tiff(path)
            except OSError as e:
                raise IoFailure(f"Could not convert stencil {path}: {e}") from e
            desc = inspect_bytes(data)
            body = read_raw_data(io.BytesIO(data), desc)
        else:
            body = read_raw_file(path, desc)

        return self.doc.new_object({
            "Type": Name("XObject"),
            "Subtype": Name("Image"),
            "OC": ocg.ref,
            "Width": desc.width,
            "Height": desc.height,
            "ImageMask": True,
            "ColorSpace": Name("DeviceGray"),
            "BitsPerComponent": 1,
            "Filter": Name("CCITTFaxDecode"),
            "DecodeParms": {"Columns": desc.width, "K": -1},
        }, body)

    def load_jbig2_stencil(self, path: Path, dict_path: Path, ocg: PdfObject,
                           pending: List[PdfObject]) -> PdfObject:
        """
        Image mask from jbig2enc output.

        The symbol dictionary is embedded once for all stencils sharing it;
        a newly embedded dictionary is appended to pending.
        """
        try:
            data = Path(path).read_bytes()
        except OSError as e:
            raise IoFailure(f"Could not access {path}: {e}") from e
        if len(data) < JBIG2_HEADER_SIZE:
            raise MalformedJbig2(f"{path}: JBIG2 data too short ({len(data)} bytes)")
        width, height, x_res, y_res = struct.unpack(">IIII", data[11:JBIG2_HEADER_SIZE])

        if self._jbig2_dict_path != dict_path:
            try:
                symbols = Path(dict_path).read_bytes()
            except OSError as e:
                raise IoFailure(f"Could not access {dict_path}: {e}") from e
            self._jbig2_dict = self.doc.new_object({}, symbols)
            self._jbig2_dict_path = dict_path
            pending.append(self._jbig2_dict)

        logger.debug(f"JBIG2 stencil {path}: {width}x{height}, {x_res or 72}x{y_res or 72} dpi")
        return self.doc.new_object({
            "Type": Name("XObject"),
            "Subtype": Name("Image"),
            "OC": ocg.ref,
            "Width": width,
            "Height": height,
            "ImageMask": True,
            "ColorSpace": Name("DeviceGray"),
            "BitsPerComponent": 1,
            "Filter": Name("JBIG2Decode"),
            "DecodeParms": {"JBIG2Globals": self._jbig2_dict.ref},
        }, data)

    def load_image(self, path: Path, ocg: PdfObject, proc_set: List[str]) -> PdfObject:
        """
        Image XObject for a foreground or background layer.

        JPEG and JPEG2000 files, plain PNGs and single-strip TIFFs are
        embedded from their compressed data; anything else goes through PNG.
        """
        desc = inspect_file(path)
        if _image_needs_reencode(desc):
            logger.debug(f"Re-encoding {path} ({desc.format}, {desc.compression}) to PNG")
            try:
                data = to_png_bytes(path)
            except OSError as e:
                raise IoFailure(f"Could not convert image {path}: {e}") from e
            desc = inspect_bytes(data)
            body = read_raw_data(io.BytesIO(data), desc)
        else:
            body = read_raw_file(path, desc)

        color_space = Name(desc.cspace)
        colors = 1
        if desc.cspace == "Indexed":
            color_space = _indexed_color_space(desc.palette)
            if "ImageI" not in proc_set:
                proc_set.append("ImageI")
        elif desc.cspace != "DeviceGray" and "ImageC" not in proc_set:
            proc_set.append("ImageC")
        if desc.cspace == "DeviceRGB":
            colors = 3
        elif desc.cspace == "DeviceCMYK":
            colors = 4

        image = self.doc.new_object({
            "Type": Name("XObject"),
            "Subtype": Name("Image"),
            "OC": ocg.ref,
            "Width": desc.width,
            "Height": desc.height,
            "Interpolate": True,
        }, body)

        if desc.format != "JPEG2000":
            image["BitsPerComponent"] = desc.depth
            image["ColorSpace"] = color_space
        if desc.compression != "NoCompression":
            image["Filter"] = Name(desc.compression)

        predictor = None
        if desc.format == "PNG":
            predictor = 15
        elif desc.format == "TIFF" and desc.tag(TAG_PREDICTOR) == 2:
            predictor = 2
        if predictor:
            image["DecodeParms"] = {
                "Predictor": predictor,
                "Colors": colors,
                "BitsPerComponent": desc.depth,
                "Columns": desc.width,
            }

        if desc.format == "PNG":
            mask = _color_key_mask(desc)
            if mask:
                image["Mask"] = mask
        return image

    def _load_stencil(self, stencil: StencilSpec, pending: List[PdfObject]) -> PdfObject:
        if self.use_jbig2 and stencil.jbig2_path is not None:
            return self.load_jbig2_stencil(stencil.jbig2_path, stencil.jbig2_dict, self.oc_fore, pending)
        return self.load_ccitt_stencil(stencil.path, self.oc_fore)

    def _load_layer(self, path: Optional[Path], ocg: PdfObject, proc_set: List[str]) -> Optional[PdfObject]:
        if path is None:
            return None
        try:
            return self.load_image(path, ocg, proc_set)
        except (ParseError, IoFailure) as e:
            logger.warning(f"Ignoring layer {path}: {e.message}")
            return None

    # ------------------------------------------------------------ text

    def _fonts(self) -> PdfObject:
        if self._font_dict is None:
            self._font_dict = self.doc.add_new()
            descriptor = {"Type": Name("FontDescriptor"), "FontName": Name(FONT_NAME)}
            descriptor.update(TIMES_HEADER)
            self._font_descriptor = self.doc.add_new(descriptor)
        return self._font_dict

    def _text_layer(self, page: PageData, page_height: float) -> str:
        try:
            soup = load_hocr(page.hocr_path)
        except IoFailure as e:
            logger.warning(f"No text layer for {page.source}: {e.message}")
            return ""
        return compose_text_layer(soup, page_height, 72.0 / page.x_dpi, 72.0 / page.y_dpi, self.encoder)

    # ------------------------------------------------------------ pages

    def page_key(self, index: int) -> str:
        """Name TOC entries use to point at the page with this 0-based index."""
        if self.labels:
            return label_for(self.labels, index)
        return str(index + 1)

    def add_page(self, page: PageData) -> bool:
        """
        Add one page. Returns False, adding nothing, if a stencil cannot be loaded.
        """
        if self._finished:
            raise RuntimeError("Cannot add pages after the document has been rendered")

        pending: List[PdfObject] = []
        stencils: List[PdfObject] = []
        try:
            for stencil in page.stencils:
                stencils.append(self._load_stencil(stencil, pending))
        except (ParseError, IoFailure) as e:
            logger.warning(f"Skipping page {page.source}: {e.message}")
            if self._jbig2_dict in pending:
                self._jbig2_dict_path = None
            return False
        if not stencils:
            logger.warning(f"Skipping page {page.source}: no stencils")
            return False

        proc_set = ["PDF", "ImageB"]
        fg_image = self._load_layer(page.fg_layer, self.oc_fore, proc_set)
        bg_image = self._load_layer(page.bg_layer, self.oc_back, proc_set)

        page_width = page.width / page.x_dpi * 72
        page_height = page.height / page.y_dpi * 72

        xobjects: Dict[str, Ref] = {}
        if fg_image is not None:
            mask = stencils[0]
            fg_image["SMask"] = mask.ref
            del mask["ImageMask"]
            mask["Decode"] = [1, 0]
            xobjects["Im0"] = fg_image.ref
            images = stencils + [fg_image]
            content = "/Im0 Do "
        else:
            parts = []
            for i, (spec, xobj) in enumerate(zip(page.stencils, stencils)):
                r, g, b = spec.rgb
                parts.append(f"{r:g} {g:g} {b:g} rg /Im{i} Do ")
                xobjects[f"Im{i}"] = xobj.ref
            images = list(stencils)
            content = "".join(parts)

        if bg_image is not None:
            name = f"Im{len(xobjects)}"
            xobjects[name] = bg_image.ref
            images.append(bg_image)
            content = f"/{name} Do " + content

        content = f"q {page_width:.2f} 0 0 {page_height:.2f} 0 0 cm {content}Q"

        resources = self.doc.new_object({"XObject": xobjects})
        if page.hocr_path is not None:
            text = self._text_layer(page, page_height)
            if text:
                content += text
                proc_set.append("Text")
                resources["Font"] = self._fonts().ref
        resources["ProcSet"] = [Name(p) for p in proc_set]

        contents = self.doc.new_object({"Filter": Name("FlateDecode")}, zlib.compress(content.encode("latin-1"), 9))

        page_obj = self.doc.new_object({
            "Type": Name("Page"),
            "Parent": self.pages.ref,
            "MediaBox": [0, 0, round(page_width, 2), round(page_height, 2)],
            "Contents": contents.ref,
            "Resources": resources.ref,
        })
        if fg_image is not None:
            # blend in the foreground's color space, not the viewer's default
            cs = fg_image.get("ColorSpace", Name("DeviceRGB"))
            if isinstance(cs, list):
                cs = cs[1]
            page_obj["Group"] = {"S": Name("Transparency"), "CS": cs}

        for obj in pending + images + [contents, resources, page_obj]:
            self.doc.add(obj)

        index = len(self.page_ids)
        self.page_ids.append(page_obj.id)
        self.pages["Kids"] = [Ref(i) for i in self.page_ids]
        self.pages["Count"] = len(self.page_ids)
        self.pages_by_key.setdefault(self.page_key(index), page_obj.id)

        logger.info(f"Processed {page.source}")
        if bg_image is not None:
            logger.info(f"  Added background image from {page.bg_layer}")
        if fg_image is not None:
            logger.info(f"  Added foreground image from {page.fg_layer}")
        return True

    # ------------------------------------------------------------ document

    def _add_fonts(self):
        if self._font_dict is None:
            return
        for i, bucket in enumerate(self.encoder.buckets, 1):
            encoding = self.doc.add_new({
                "Type": Name("Encoding"),
                "Differences": [0] + [Name(n) for n in glyph_names(bucket)],
            })
            to_unicode = self.doc.add_new(
                {"Filter": Name("FlateDecode")},
                zlib.compress(to_unicode_cmap(bucket), 9),
            )
            font = self.doc.add_new({
                "BaseFont": Name(FONT_NAME),
                "Name": Name(f"Fnt{i}"),
                "Subtype": Name("Type1"),
                "Type": Name("Font"),
                "FirstChar": 0,
                "LastChar": len(bucket) - 1,
                "Widths": glyph_widths(bucket),
                "FontDescriptor": self._font_descriptor.ref,
                "ToUnicode": to_unicode.ref,
                "Encoding": encoding.ref,
            })
            self._font_dict[f"Fnt{i}"] = font.ref
        logger.debug(f"Added {len(self.encoder.buckets)} fonts")

    def _add_outline(self):
        outline = self.outline
        if outline is None or len(outline) == 0:
            return

        objs = {Outline.ROOT: self.outlines}
        for idx in outline.entries():
            objs[idx] = self.doc.new_object()
        self.outlines["Count"] = outline.visible_count(Outline.ROOT)

        for idx in outline.entries():
            node = outline[idx]
            obj = objs[idx]
            obj["Title"] = text_string(node.title)
            obj["Parent"] = objs[node.parent].ref

            page_id = self.pages_by_key.get(node.ref)
            if page_id is not None:
                obj["Dest"] = [Ref(page_id), Name("XYZ"), None, None, None]
            else:
                logger.warning(f"Malformed TOC: there is no page {node.ref} in this document")
                obj["C"] = UNRESOLVED_COLOR

            if node.children:
                count = outline.visible_count(idx)
                obj["Count"] = count if node.open else -count

            if node.prev is None:
                objs[node.parent]["First"] = obj.ref
            else:
                objs[node.prev]["Next"] = obj.ref
                obj["Prev"] = objs[node.prev].ref
            if node.next is None:
                objs[node.parent]["Last"] = obj.ref

            self.doc.add(obj)

        self.catalog["PageMode"] = Name("UseOutlines")

    def finish(self):
        """Add the document-wide objects. Called once, before rendering."""
        if self._finished:
            return
        self._add_fonts()
        self._add_outline()
        if self.labels:
            self.catalog["PageLabels"] = number_tree(self.labels)
        self._finished = True

    @property
    def page_count(self) -> int:
        return len(self.page_ids)

    def to_bytes(self) -> bytes:
        self.finish()
        return self.doc.serialize()

    def save(self, output_path) -> int:
        """Write the PDF to a path, or to standard output for "-". Returns the size."""
        data = self.to_bytes()
        if str(output_path) == "-":
            sys.stdout.buffer.write(data)
            sys.stdout.buffer.flush()
            logger.info(f"Wrote {len(self.page_ids)} pages to standard output")
            return len(data)

        output_path = Path(output_path)
        try:
            output_path.write_bytes(data)
        except OSError as e:
            raise IoFailure(f"Could not write to {output_path}: {e}") from e

        logger.info(f"Saved {len(self.page_ids)} pages to {output_path}")
        return len(data)
