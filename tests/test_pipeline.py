import struct
import subprocess
from pathlib import Path

import fitz
import pytest

from pdf_assembler import jbig2
from pdf_assembler.options import AssemblyOptions
from pdf_assembler.pages import prepare_page
from pdf_assembler.pipeline import assemble_pdf


def _options(**kwargs):
    kwargs.setdefault("stencil_format", "CCITT")
    kwargs.setdefault("bg_format", "PNG")
    kwargs.setdefault("max_workers", 1)
    return AssemblyOptions(**kwargs)


def _fake_jbig2_page(width, height):
    return b"\x00" * 11 + struct.pack(">IIII", width, height, 0, 0) + b"\x00" * 4


@pytest.fixture()
def fake_encoder(monkeypatch):
    """Stand-in for jbig2enc: writes output.NNNN and output.sym into its cwd."""
    calls = []

    def run(cmd, cwd=None, **kwargs):
        calls.append(cmd)
        inputs = cmd[3:]
        for i, _ in enumerate(inputs):
            (Path(cwd) / f"output.{i:04d}").write_bytes(_fake_jbig2_page(400, 200))
        (Path(cwd) / "output.sym").write_bytes(b"\x00symbols")
        return subprocess.CompletedProcess(cmd, 0, "", "")

    monkeypatch.setattr(jbig2, "get_jbig2_command", lambda: "jbig2")
    monkeypatch.setattr(jbig2.subprocess, "run", run)
    return calls


def test_pages_keep_input_order(g4_page, tmp_path):
    inputs = [g4_page(f"p{i}.tif", size=(400 + 100 * i, 200)) for i in range(4)]
    output = tmp_path / "out.pdf"

    result = assemble_pdf(inputs, output, _options(max_workers=3))

    assert result.success
    assert result.pages_ok == 4
    assert result.stencil_format == "CCITT"
    assert [s.page_num for s in result.page_stats] == [0, 1, 2, 3]

    doc = fitz.open(output)
    widths = [round(doc[i].rect.width) for i in range(doc.page_count)]
    assert widths == [288, 360, 432, 504]
    assert result.output_size == output.stat().st_size


def test_bad_inputs_are_skipped(g4_page, tmp_path):
    good = g4_page("p1.tif")
    broken = tmp_path / "p2.tif"
    broken.write_bytes(b"MM\x00\x2a\x00\x00\x00\x08\x00")
    ignored = tmp_path / "notes.txt"
    ignored.write_text("not a page")

    result = assemble_pdf([good, broken, ignored], tmp_path / "out.pdf", _options())

    assert result.success
    assert result.page_count == 2
    assert result.pages_ok == 1
    assert result.pages_failed == 1
    assert not result.page_stats[1].success
    assert result.page_stats[1].error


def test_page_without_physical_resolution(page_image, png_factory, tmp_path):
    good = tmp_path / "p1.png"
    page_image(mode="L").save(good, dpi=(300, 300))
    aspect_only = tmp_path / "p2.png"
    aspect_only.write_bytes(png_factory(16, 2, 0, 8, [b"\xff" * 16] * 2, phys=(1, 1, 0)))
    output = tmp_path / "out.pdf"

    result = assemble_pdf([good, aspect_only], output, _options())

    assert result.success
    assert result.pages_ok == 2
    doc = fitz.open(output)
    # 16x2 pixels at the 72 dpi default
    assert (round(doc[1].rect.width), round(doc[1].rect.height)) == (16, 2)


def test_nothing_to_write(tmp_path):
    broken = tmp_path / "p1.tif"
    broken.write_bytes(b"garbage")
    output = tmp_path / "out.pdf"

    result = assemble_pdf([broken], output, _options())

    assert not result.success
    assert result.error
    assert not output.exists()


def test_document_features_from_files(g4_page, tmp_path):
    inputs = [g4_page(f"p{i}.tif") for i in range(3)]
    toc = tmp_path / "toc.txt"
    toc.write_text('"Cover" "C"\n"Start" "1"\n', encoding="utf-8")
    meta = tmp_path / "meta.txt"
    meta.write_text('Title: "Collected Scans"\nSubject: "Tests"\n', encoding="utf-8")
    output = tmp_path / "out.pdf"

    result = assemble_pdf(inputs, output, _options(
        labels="0:C;1:%D", toc=str(toc), meta=str(meta), page_layout="TwoColumnLeft",
    ))
    assert result.success

    doc = fitz.open(output)
    assert doc.metadata["title"] == "Collected Scans"
    assert doc.metadata["subject"] == "Tests"
    assert [doc[i].get_label() for i in range(3)] == ["C", "1", "2"]
    assert [entry[1:3] for entry in doc.get_toc()] == [["Cover", 1], ["Start", 2]]
    assert b"/PageLayout /TwoColumnLeft" in output.read_bytes()


def test_broken_side_files_only_disable_their_feature(g4_page, tmp_path, caplog):
    toc = tmp_path / "toc.txt"
    toc.write_text('"A" "1"\n    "B" "1"\n  "C" "1"\n', encoding="utf-8")
    output = tmp_path / "out.pdf"

    result = assemble_pdf([g4_page()], output, _options(labels="x:%D", toc=str(toc)))

    assert result.success
    assert "Page labels disabled" in caplog.text
    assert "Outline disabled" in caplog.text
    assert fitz.open(output).get_toc() == []


def test_created_files_are_deleted(page_image, tmp_path):
    path = tmp_path / "p1.png"
    page_image(mode="L").save(path, dpi=(300, 300))

    result = assemble_pdf([path], tmp_path / "out.pdf", _options(delete_files=True))

    assert result.success
    assert result.page_stats[0].kind == "mixed"
    assert result.page_stats[0].has_background
    assert not (tmp_path / "p1.black.tiff").exists()
    assert not (tmp_path / "p1.bg.png").exists()
    assert path.exists()


def test_missing_encoder_falls_back_to_ccitt(g4_page, tmp_path, monkeypatch):
    monkeypatch.setattr(jbig2, "get_jbig2_command", lambda: None)
    result = assemble_pdf([g4_page()], tmp_path / "out.pdf", _options(stencil_format="JBIG2"))

    assert result.success
    assert result.stencil_format == "CCITT"
    assert b"/CCITTFaxDecode" in (tmp_path / "out.pdf").read_bytes()


def test_jbig2_groups_share_dictionaries(g4_page, tmp_path, fake_encoder):
    inputs = [g4_page(f"p{i}.tif") for i in range(3)]
    output = tmp_path / "out.pdf"

    result = assemble_pdf(inputs, output, _options(stencil_format="JBIG2", pages_per_dict=2))

    assert result.success
    assert result.stencil_format == "JBIG2"
    assert len(fake_encoder) == 2
    assert (tmp_path / "p0.sym").exists()
    assert (tmp_path / "p2.sym").exists()
    assert (tmp_path / "p1.jbig2").exists()

    data = output.read_bytes()
    assert data.count(b"/JBIG2Decode") == 3
    assert data.count(b"/JBIG2Globals") == 3
    assert b"/CCITTFaxDecode" not in data


def test_jbig2_output_is_reused(g4_page, tmp_path, fake_encoder):
    options = _options(stencil_format="JBIG2")
    pages = [prepare_page(g4_page(f"p{i}.tif"), options) for i in range(2)]

    assert jbig2.encode_pages(pages, 15)
    assert jbig2.encode_pages(pages, 15)
    assert len(fake_encoder) == 1

    assert jbig2.encode_pages(pages, 15, force=True)
    assert len(fake_encoder) == 2


def test_failing_encoder_falls_back(g4_page, monkeypatch):
    def run(cmd, **kwargs):
        return subprocess.CompletedProcess(cmd, 1, "", "bad input")

    monkeypatch.setattr(jbig2, "get_jbig2_command", lambda: "jbig2")
    monkeypatch.setattr(jbig2.subprocess, "run", run)

    options = _options(stencil_format="JBIG2")
    assert not jbig2.encode_pages([prepare_page(g4_page(), options)], 15)


def test_write_to_stdout(g4_page, capsysbinary):
    result = assemble_pdf([g4_page()], "-", _options())

    assert result.success
    out = capsysbinary.readouterr().out
    assert out.startswith(b"%PDF")
    assert fitz.open(stream=out, filetype="pdf").page_count == 1
