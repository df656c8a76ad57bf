"""
options.py - Assembly settings.
"""

from dataclasses import dataclass
from typing import Optional

PAGE_LAYOUTS = ("SinglePage", "OneColumn", "TwoColumnLeft", "TwoColumnRight", "TwoPageLeft", "TwoPageRight")
STENCIL_FORMATS = ("JBIG2", "CCITT")
BG_FORMATS = ("JP2", "JPG", "PNG")

DEFAULT_PAGE_LAYOUT = "SinglePage"
DEFAULT_STENCIL_FORMAT = "JBIG2"
DEFAULT_PAGES_PER_DICT = 15
DEFAULT_THRESHOLD = 1          # 0..255, pixels at or below are text
DEFAULT_MAX_COLORS = 4         # indexed pages with more colors are split as mixed content
DEFAULT_BG_FORMAT = "JP2"
DEFAULT_BG_RESOLUTION = 300


@dataclass
class AssemblyOptions:
    """Everything that changes how pages are prepared and assembled."""
    labels: Optional[str] = None
    toc: Optional[str] = None
    meta: Optional[str] = None
    page_layout: str = DEFAULT_PAGE_LAYOUT

    stencil_format: str = DEFAULT_STENCIL_FORMAT
    pages_per_dict: int = DEFAULT_PAGES_PER_DICT
    stencil_resolution: int = 0     # 0 = take from the file

    threshold: int = DEFAULT_THRESHOLD
    max_colors: int = DEFAULT_MAX_COLORS
    bg_format: str = DEFAULT_BG_FORMAT
    bg_resolution: int = DEFAULT_BG_RESOLUTION
    force_grayscale: bool = False

    force_update: bool = False
    delete_files: bool = False
    max_workers: int = 0            # 0 = one per CPU

    def __post_init__(self):
        self.stencil_format = self.stencil_format.upper()
        self.bg_format = self.bg_format.upper()
        if self.bg_format == "JPEG":
            self.bg_format = "JPG"
        if self.page_layout not in PAGE_LAYOUTS:
            raise ValueError(f"Unknown page layout {self.page_layout!r}")
        if self.stencil_format not in STENCIL_FORMATS:
            raise ValueError(f"Unknown stencil format {self.stencil_format!r}")
        if self.bg_format not in BG_FORMATS:
            raise ValueError(f"Unknown background format {self.bg_format!r}")
        if not 0 <= self.threshold <= 255:
            raise ValueError(f"Threshold must be between 0 and 255, got {self.threshold}")
        if self.pages_per_dict < 1:
            raise ValueError("pages_per_dict must be at least 1")
