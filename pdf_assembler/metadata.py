"""
metadata.py - Document information entries.

A metadata file holds one 'Key: "value"' pair per line; only Title, Author,
Subject and Keywords are taken, '#' starts a comment line.
"""

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, Optional

from .errors import IoFailure, MetadataError

logger = logging.getLogger(__name__)

METADATA_KEYS = ("Title", "Author", "Subject", "Keywords")

_LINE_RE = re.compile(r'^/?([A-Za-z]+)[ \t]*:[ \t]+"(.*)"')


def parse_metadata(lines: Iterable[str], source: str = "<meta>") -> Dict[str, str]:
    meta = {}
    for lineno, line in enumerate(lines, 1):
        if line.startswith("#"):
            continue
        m = _LINE_RE.match(line)
        if not m:
            continue
        key, value = m.groups()
        if key in METADATA_KEYS:
            meta[key] = value
        else:
            logger.warning(f"{source}:{lineno}: ignoring unsupported metadata key {key!r}")
    return meta


def load_metadata(path) -> Dict[str, str]:
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise MetadataError(f"{path}: metadata should be specified in UTF-8") from e
    except OSError as e:
        raise IoFailure(f"Could not read metadata file {path}: {e}") from e
    return parse_metadata(text.splitlines(), source=str(path))


def creation_date(now: Optional[datetime] = None) -> str:
    """PDF date string, e.g. D:20240131120000+02'00' (Z for UTC)."""
    if now is None:
        now = datetime.now().astimezone()
    stamp = now.strftime("D:%Y%m%d%H%M%S")

    offset = now.utcoffset()
    if offset is None:
        return stamp
    minutes = int(offset.total_seconds()) // 60
    if minutes == 0:
        return stamp + "Z"
    sign = "+" if minutes > 0 else "-"
    minutes = abs(minutes)
    return f"{stamp}{sign}{minutes // 60:02d}'{minutes % 60:02d}'"
