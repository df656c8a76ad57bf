"""
pipeline.py - Scanned pages to PDF, end to end.

Pipeline:
1. Prepare every page image (inspection, stencil/background split) in parallel
2. Encode stencils to JBIG2 if requested, falling back to CCITT G4
3. Add pages to the PDF in input order
4. Write the PDF, optionally cleaning up generated files
"""

import logging
import multiprocessing
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from .errors import PdfAssemblerError
from .jbig2 import encode_pages
from .labels import PageLabelRange, parse_page_labels
from .metadata import load_metadata
from .options import AssemblyOptions
from .outline import Outline, load_toc
from .pages import PageData, is_page_image, prepare_page
from .pdf_writer import PDFWriter

logger = logging.getLogger(__name__)


@dataclass
class PageStats:
    """Statistics for a processed page."""
    page_num: int
    source: Path
    success: bool
    error: Optional[str] = None
    process_time: float = 0.0
    kind: str = ""
    stencils: int = 0
    has_background: bool = False
    has_foreground: bool = False
    has_text: bool = False


@dataclass
class AssemblyResult:
    """Result of assembling a PDF."""
    output_path: str
    success: bool
    error: Optional[str] = None

    page_count: int = 0
    pages_ok: int = 0
    pages_failed: int = 0

    input_size: int = 0
    output_size: int = 0
    total_time: float = 0.0
    stencil_format: str = ""

    page_stats: List[PageStats] = field(default_factory=list)

    @property
    def avg_page_size(self) -> float:
        if self.pages_ok == 0:
            return 0
        return self.output_size / self.pages_ok

    def summary(self) -> str:
        return (
            f"Input:  {self.page_count} images ({self.input_size:,} bytes)\n"
            f"Output: {self.output_path} ({self.output_size:,} bytes)\n"
            f"Stencils: {self.stencil_format}\n"
            f"Pages: {self.pages_ok}/{self.page_count}\n"
            f"Avg page size: {self.avg_page_size:,.0f} bytes\n"
            f"Time: {self.total_time:.1f}s"
        )


def process_page(page_num: int, path: Path, options: AssemblyOptions) -> tuple:
    """
    Prepare a single page: inspect the image, split it into layers.

    Returns (stats, page); page is None if the image cannot be used.
    """
    stats = PageStats(page_num=page_num, source=path, success=False)

    try:
        start = time.time()
        page = prepare_page(path, options)
        stats.process_time = time.time() - start

        if page is None:
            stats.error = "not a usable page image"
            logger.warning(f"Page {page_num + 1} ({path}) skipped: {stats.error}")
            return stats, None

        stats.kind = page.kind
        stats.stencils = len(page.stencils)
        stats.has_background = page.bg_layer is not None
        stats.has_foreground = page.fg_layer is not None
        stats.has_text = page.hocr_path is not None
        stats.success = True
        return stats, page

    except PdfAssemblerError as e:
        logger.warning(f"Page {page_num + 1} ({path}) skipped: {e.message}")
        stats.error = e.message
        return stats, None
    except Exception as e:
        logger.error(f"Page {page_num + 1} ({path}) failed: {e}")
        stats.error = str(e)
        return stats, None


def load_labels(options: AssemblyOptions) -> Optional[List[PageLabelRange]]:
    if not options.labels:
        return None
    try:
        return parse_page_labels(options.labels)
    except PdfAssemblerError as e:
        logger.error(f"Page labels disabled: {e.message}")
        return None


def load_outline(options: AssemblyOptions) -> Optional[Outline]:
    if not options.toc:
        return None
    try:
        return load_toc(options.toc)
    except PdfAssemblerError as e:
        logger.error(f"Outline disabled: {e.message}")
        return None


def load_meta(options: AssemblyOptions) -> Dict[str, str]:
    if not options.meta:
        return {}
    try:
        return load_metadata(options.meta)
    except PdfAssemblerError as e:
        logger.error(f"Metadata disabled: {e.message}")
        return {}


def delete_created_files(pages: List[PageData]):
    for page in pages:
        logger.info(f"Cleaning up temporary files for {page.source}")
        for path in page.created_files():
            try:
                path.unlink()
                logger.info(f"  Deleted {path}")
            except OSError as e:
                logger.warning(f"  Could not delete {path}: {e}")


def prepare_pages(
    paths: List[Path],
    options: AssemblyOptions,
    progress_callback: Optional[Callable[[int, int], None]] = None
) -> tuple:
    """Prepare all pages; returns (stats in input order, pages in input order with None for failures)."""
    total = len(paths)
    prepared: List[Optional[PageData]] = [None] * total
    page_stats: List[PageStats] = []

    max_workers = options.max_workers
    if max_workers <= 0:
        max_workers = multiprocessing.cpu_count()

    if max_workers == 1 or total <= 1:
        for page_num, path in enumerate(paths):
            stats, page = process_page(page_num, path, options)
            page_stats.append(stats)
            prepared[page_num] = page
            if progress_callback:
                progress_callback(page_num + 1, total)
    else:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = {
                executor.submit(process_page, i, path, options): i
                for i, path in enumerate(paths)
            }

            completed = 0
            for future in as_completed(futures):
                page_num = futures[future]
                stats, page = future.result()
                page_stats.append(stats)
                prepared[page_num] = page
                completed += 1
                if progress_callback:
                    progress_callback(completed, total)

    page_stats.sort(key=lambda s: s.page_num)
    return page_stats, prepared


def assemble_pdf(
    inputs: Sequence,
    output_path,
    options: Optional[AssemblyOptions] = None,
    progress_callback: Optional[Callable[[int, int], None]] = None
) -> AssemblyResult:
    """
    Build one PDF from scanned page images.

    Args:
        inputs: Page images (TIFF or PNG) in document order
        output_path: Output PDF, or "-" for standard output
        options: Assembly settings
        progress_callback: Optional callback(current, total) during page preparation

    Returns:
        AssemblyResult with statistics
    """
    options = options or AssemblyOptions()
    result = AssemblyResult(output_path=str(output_path), success=False)

    try:
        start_time = time.time()

        paths = []
        for item in inputs:
            path = Path(item)
            if is_page_image(path):
                paths.append(path)
            else:
                logger.warning(f"Ignoring {path}: page images must be named <name>.tif(f) or <name>.png")
        result.page_count = len(paths)
        result.input_size = sum(p.stat().st_size for p in paths if p.exists())

        logger.info(f"Processing {result.page_count} page images")

        labels = load_labels(options)
        outline = load_outline(options)
        metadata = load_meta(options)

        page_stats, prepared = prepare_pages(paths, options, progress_callback)
        result.page_stats = page_stats
        pages = [p for p in prepared if p is not None]

        use_jbig2 = False
        if options.stencil_format == "JBIG2" and pages:
            use_jbig2 = encode_pages(pages, options.pages_per_dict, options.force_update)
        result.stencil_format = "JBIG2" if use_jbig2 else "CCITT"

        writer = PDFWriter(options, labels=labels, outline=outline, metadata=metadata, use_jbig2=use_jbig2)
        for page, stats in zip(prepared, page_stats):
            if page is None:
                continue
            if not writer.add_page(page):
                stats.success = False
                stats.error = "stencil could not be loaded"

        result.pages_ok = writer.page_count
        result.pages_failed = result.page_count - result.pages_ok

        if result.pages_ok > 0:
            result.output_size = writer.save(output_path)
            result.success = True
        else:
            result.error = "no pages could be added"
            logger.error("No pages could be added, nothing written")

        if options.delete_files:
            delete_created_files(pages)

        result.total_time = time.time() - start_time

        logger.info(f"\n{result.summary()}")

    except PdfAssemblerError as e:
        logger.error(f"Assembly failed: {e.message}")
        result.error = e.message
    except Exception as e:
        logger.error(f"Pipeline failed: {e}")
        result.error = str(e)

    return result
