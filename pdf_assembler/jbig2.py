"""
jbig2.py - JBIG2 encoding of stencils with the external jbig2enc tool.

Stencils are encoded in groups of pages_per_dict pages, each group sharing
one symbol dictionary. For every stencil the encoder output lands next to it
as <stencil>.jbig2, the group's dictionary as <first stencil>.sym.
"""

import logging
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import List, Optional

from .pages import PageData, StencilSpec

logger = logging.getLogger(__name__)

ENCODER_TIMEOUT = 600


def get_jbig2_command() -> Optional[str]:
    """Path of the jbig2 encoder, or None if it is not installed."""
    return shutil.which("jbig2")


def _needs_update(stencils: List[StencilSpec]) -> bool:
    return any(not s.jbig2_path.exists() or not s.jbig2_dict.exists() for s in stencils)


def _run_encoder(command: str, stencils: List[StencilSpec]):
    with tempfile.TemporaryDirectory() as tmpdir:
        cmd = [command, "-s", "-p"] + [str(s.path.resolve()) for s in stencils]
        logger.debug(f"Running {' '.join(cmd)}")

        result = subprocess.run(
            cmd,
            cwd=tmpdir,
            capture_output=True,
            text=True,
            timeout=ENCODER_TIMEOUT
        )

        if result.returncode != 0:
            raise RuntimeError(f"jbig2 failed: {result.stderr.strip()}")

        out_dir = Path(tmpdir)
        for i, stencil in enumerate(stencils):
            page_file = out_dir / f"output.{i:04d}"
            if page_file.exists():
                shutil.move(str(page_file), str(stencil.jbig2_path))
        sym_file = out_dir / "output.sym"
        if sym_file.exists():
            shutil.move(str(sym_file), str(stencils[0].jbig2_dict))


def encode_pages(pages: List[PageData], pages_per_dict: int, force: bool = False) -> bool:
    """
    Encode the stencils of all pages to JBIG2.

    Returns False if the encoder is missing or fails; the caller then
    uses CCITT Group 4 instead. A group is only re-encoded if one of its
    outputs is missing or force is set.
    """
    command = get_jbig2_command()
    if command is None:
        logger.warning(
            "JBIG2 compression has been requested, but the encoder is not available. "
            "Using CCITT Group 4 fax compression instead."
        )
        return False

    for start in range(0, len(pages), pages_per_dict):
        group = [s for page in pages[start:start + pages_per_dict] for s in page.stencils]
        if not group:
            continue

        dict_path = group[0].path.with_suffix(".sym")
        for stencil in group:
            stencil.jbig2_path = stencil.path.with_suffix(".jbig2")
            stencil.jbig2_dict = dict_path

        if not force and not _needs_update(group):
            logger.debug(f"JBIG2 data for {len(group)} stencils is up to date")
            continue

        try:
            _run_encoder(command, group)
        except (OSError, subprocess.SubprocessError, RuntimeError) as e:
            logger.warning(f"JBIG2 encoding failed, using CCITT Group 4 instead: {e}")
            return False

        logger.info(f"Encoded {len(group)} stencils to JBIG2 with dictionary {dict_path.name}")

    return True
