from datetime import datetime, timedelta, timezone

import pytest

from pdf_assembler.errors import IoFailure, MetadataError
from pdf_assembler.metadata import creation_date, load_metadata, parse_metadata


def test_parse_metadata(caplog):
    meta = parse_metadata([
        '# scanned 2019',
        'Title: "A Book"',
        '/Author:  "Jane Doe"',
        'Publisher: "Somebody"',
        'Keywords: "scan, ocr"',
        'Subject: no quotes',
    ])
    assert meta == {"Title": "A Book", "Author": "Jane Doe", "Keywords": "scan, ocr"}
    assert "Publisher" in caplog.text


def test_load_metadata(tmp_path):
    path = tmp_path / "meta.txt"
    path.write_text('Title: "Überblick"\n', encoding="utf-8")
    assert load_metadata(path) == {"Title": "Überblick"}

    path.write_bytes(b'Title: "\xdcberblick"\n')
    with pytest.raises(MetadataError):
        load_metadata(path)

    with pytest.raises(IoFailure):
        load_metadata(tmp_path / "missing.txt")


def test_creation_date():
    when = datetime(2024, 1, 31, 12, 0, 5, tzinfo=timezone(timedelta(hours=2)))
    assert creation_date(when) == "D:20240131120005+02'00'"

    when = datetime(2024, 1, 31, 12, 0, 5, tzinfo=timezone(-timedelta(hours=3, minutes=30)))
    assert creation_date(when) == "D:20240131120005-03'30'"

    when = datetime(2024, 1, 31, 12, 0, 5, tzinfo=timezone.utc)
    assert creation_date(when) == "D:20240131120005Z"

    assert creation_date(datetime(2024, 1, 31)) == "D:20240131000000"
