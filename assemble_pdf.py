#!/usr/bin/env python3
"""
assemble_pdf.py - Build one layered PDF from scanned page images.

Usage:
    python assemble_pdf.py page*.tif -o book.pdf
    python assemble_pdf.py page*.png -C toc.txt -M meta.txt -o book.pdf
    python assemble_pdf.py page*.tif -L "0:Cover;1:%R;5:%D" -m CCITT > book.pdf
"""

import argparse
import logging
import sys
from pathlib import Path

# Add parent to path when running as script
if __name__ == "__main__":
    sys.path.insert(0, str(Path(__file__).parent))

from pdf_assembler.options import (
    BG_FORMATS,
    DEFAULT_BG_FORMAT,
    DEFAULT_BG_RESOLUTION,
    DEFAULT_MAX_COLORS,
    DEFAULT_PAGE_LAYOUT,
    DEFAULT_PAGES_PER_DICT,
    DEFAULT_STENCIL_FORMAT,
    DEFAULT_THRESHOLD,
    PAGE_LAYOUTS,
    STENCIL_FORMATS,
    AssemblyOptions,
)
from pdf_assembler.pipeline import assemble_pdf


def setup_logging(verbose: bool = False):
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S"
    )


def parse_args(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Assemble scanned page images into a single layered PDF.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python assemble_pdf.py page*.tif -o book.pdf
  python assemble_pdf.py page*.png -C toc.txt -M meta.txt -o book.pdf
  python assemble_pdf.py page*.tif -L "0:Cover;1:%R;5:%D" > book.pdf

Page images must be named <name>.tif, <name>.tiff or <name>.png. Files
sharing <name> are picked up from the same directory:
  <name>.bg.* / <name>.sep.*   background layer
  <name>.fg.*                  foreground layer
  <name>.hocr / <name>.html    OCR text

TOC file lines:       <indent>"Title" "Page" [+]
Page label ranges:    <first page>:<prefix>%<start><D|R|r|A|a>;...
Metadata file lines:  Title: "..."  (also Author, Subject, Keywords)
"""
    )

    parser.add_argument(
        "input",
        nargs="+",
        type=Path,
        help="Page images in document order"
    )

    parser.add_argument(
        "-o", "--output",
        default="-",
        help="Output PDF (default: standard output)"
    )

    parser.add_argument(
        "-L", "--labels",
        help="Page label ranges, e.g. \"0:%%R;4:%%D\""
    )
    parser.add_argument(
        "-C", "--toc",
        type=Path,
        help="Table of contents file"
    )
    parser.add_argument(
        "-M", "--meta",
        type=Path,
        help="Metadata file"
    )
    parser.add_argument(
        "-P", "--pagelayout",
        choices=PAGE_LAYOUTS,
        default=DEFAULT_PAGE_LAYOUT,
        help=f"Initial page layout (default: {DEFAULT_PAGE_LAYOUT})"
    )

    parser.add_argument(
        "-m", "--stencil-format",
        type=str.upper,
        choices=STENCIL_FORMATS,
        default=DEFAULT_STENCIL_FORMAT,
        help=f"Stencil compression (default: {DEFAULT_STENCIL_FORMAT}, CCITT if jbig2 is not installed)"
    )
    parser.add_argument(
        "-p", "--pages-per-dict",
        type=int,
        default=DEFAULT_PAGES_PER_DICT,
        help=f"Pages sharing one JBIG2 symbol dictionary (default: {DEFAULT_PAGES_PER_DICT})"
    )
    parser.add_argument(
        "-r", "--stencil-dpi",
        type=int,
        default=0,
        help="Stencil resolution (default: taken from the image)"
    )

    parser.add_argument(
        "-t", "--threshold",
        type=int,
        default=DEFAULT_THRESHOLD,
        help=f"Gray level 0-255 at or below which pixels count as text (default: {DEFAULT_THRESHOLD})"
    )
    parser.add_argument(
        "-x", "--max-colors",
        type=int,
        default=DEFAULT_MAX_COLORS,
        help=f"Indexed images with up to this many colors get one stencil per color (default: {DEFAULT_MAX_COLORS})"
    )
    parser.add_argument(
        "-b", "--bg-format",
        type=str.upper,
        choices=BG_FORMATS + ("JPEG",),
        default=DEFAULT_BG_FORMAT,
        help=f"Background format (default: {DEFAULT_BG_FORMAT})"
    )
    parser.add_argument(
        "-B", "--bg-dpi",
        type=int,
        default=DEFAULT_BG_RESOLUTION,
        help=f"Background resolution (default: {DEFAULT_BG_RESOLUTION})"
    )
    parser.add_argument(
        "-g", "--grayscale",
        action="store_true",
        help="Write grayscale backgrounds"
    )

    parser.add_argument(
        "-f", "--force",
        action="store_true",
        help="Regenerate existing auxiliary files"
    )
    parser.add_argument(
        "-d", "--delete",
        action="store_true",
        help="Delete auxiliary files created during the run"
    )

    parser.add_argument(
        "--workers",
        type=int,
        default=0,
        help="Parallel workers for page preparation (0 = auto, default: auto-detect CPU count)"
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose output"
    )

    return parser.parse_args(argv)


def print_progress(current: int, total: int):
    """Print progress bar."""
    width = 40
    filled = int(width * current / total)
    bar = "=" * filled + "-" * (width - filled)
    pct = current / total * 100
    print(f"\r[{bar}] {current}/{total} ({pct:.0f}%)", end="", file=sys.stderr)
    if current == total:
        print(file=sys.stderr)


def main(argv=None):
    args = parse_args(argv)
    setup_logging(args.verbose)

    # Validate inputs
    valid_inputs = []
    for p in args.input:
        if not p.exists():
            print(f"Error: File not found: {p}", file=sys.stderr)
            continue
        valid_inputs.append(p)

    if not valid_inputs:
        print("Error: No valid page images", file=sys.stderr)
        sys.exit(1)

    try:
        options = AssemblyOptions(
            labels=args.labels,
            toc=str(args.toc) if args.toc else None,
            meta=str(args.meta) if args.meta else None,
            page_layout=args.pagelayout,
            stencil_format=args.stencil_format,
            pages_per_dict=args.pages_per_dict,
            stencil_resolution=args.stencil_dpi,
            threshold=args.threshold,
            max_colors=args.max_colors,
            bg_format=args.bg_format,
            bg_resolution=args.bg_dpi,
            force_grayscale=args.grayscale,
            force_update=args.force,
            delete_files=args.delete,
            max_workers=args.workers,
        )
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    result = assemble_pdf(
        valid_inputs,
        args.output,
        options,
        progress_callback=print_progress
    )

    # keep standard output clean when the PDF goes there
    out = sys.stderr if args.output == "-" else sys.stdout
    if result.success:
        print(f"\n{result.summary()}", file=out)
        sys.exit(0)
    else:
        print(f"Error: {result.error}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
