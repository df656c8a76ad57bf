import re

import pytest

from pdf_assembler.pdf_objects import (
    Document,
    HexString,
    Name,
    Raw,
    Ref,
    String,
    doc_string,
    format_number,
    render,
    text_string,
)


def _simple_document():
    doc = Document()
    pages = doc.new_object({"Type": Name("Pages"), "Kids": [], "Count": 0})
    catalog = doc.add_new({"Type": Name("Catalog"), "Pages": pages.ref})
    info = doc.add_new({"Producer": String(b"test")})
    doc.add(pages)
    doc.root, doc.info = catalog, info
    return doc, catalog, info, pages


def test_render_values():
    assert render(True) == b"true"
    assert render(None) == b"null"
    assert render(12) == b"12"
    assert render(0.5) == b"0.5"
    assert render(Name("Type")) == b"/Type"
    assert render(Ref(7)) == b"7 0 R"
    assert render([1, Name("A"), [2]]) == b"[1 /A [2]]"
    assert render({"S": Name("D"), "St": 3}) == b"<< /S /D /St 3 >>"
    assert render(HexString(b"\x00\xab")) == b"<00AB>"
    assert render(Raw("0 0 612 792")) == b"0 0 612 792"


def test_render_escapes_strings_and_names():
    assert render(String(b"a(b)c\\")) == b"(a\\(b\\)c\\\\)"
    assert render(Name("Times Roman")) == b"/Times#20Roman"


def test_format_number():
    assert format_number(1.0) == "1"
    assert format_number(0.72) == "0.72"
    assert format_number(-0.00001) == "0"


def test_text_strings():
    assert text_string("A").data == b"\xfe\xff\x00A"
    assert doc_string("café").data == b"caf\xe9"
    assert doc_string("☃").data.startswith(b"\xfe\xff")


def test_stream_length_follows_data():
    doc = Document()
    obj = doc.new_object({"Filter": Name("FlateDecode")}, stream=b"12345")
    assert obj["Length"] == 5
    obj.set_stream(b"1")
    assert obj["Length"] == 1
    assert b"stream\n1\nendstream" in obj.serialize()


def test_xref_offsets_point_at_objects():
    doc, catalog, info, pages = _simple_document()
    data = doc.serialize()

    start = int(re.search(rb"startxref\n(\d+)\n%%EOF", data).group(1))
    assert data[start:start + 4] == b"xref"

    lines = data[start:].split(b"\n")
    count = int(lines[1].split()[1])
    assert count == 4
    entries = lines[2:2 + count]
    assert entries[0].endswith(b"65535 f ")
    for obj_id, entry in enumerate(entries[1:], start=1):
        offset = int(entry[:10])
        assert data[offset:].startswith(b"%d 0 obj" % obj_id)

    assert b"/Root %d 0 R" % catalog.id in data
    assert b"/Info %d 0 R" % info.id in data


def test_registration_order_is_file_order():
    doc, catalog, info, pages = _simple_document()
    data = doc.serialize()
    assert data.index(b"%d 0 obj" % catalog.id) < data.index(b"%d 0 obj" % pages.id)


def test_unregistered_numbers_become_free_entries():
    doc, catalog, info, pages = _simple_document()
    doc.new_object()
    doc.add_new()
    data = doc.serialize()
    assert b"00001 f \n" in data
    assert b"/Size 6" in data


def test_unregistered_root_is_rejected():
    doc = Document()
    doc.root = doc.new_object({"Type": Name("Catalog")})
    doc.info = doc.add_new()
    with pytest.raises(ValueError):
        doc.serialize()


def test_double_registration_is_rejected():
    doc = Document()
    obj = doc.add_new()
    with pytest.raises(ValueError):
        doc.add(obj)
