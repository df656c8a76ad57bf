import fitz
import pytest

import assemble_pdf


def test_parse_args_defaults():
    args = assemble_pdf.parse_args(["p1.tif"])
    assert args.output == "-"
    assert args.stencil_format == "JBIG2"
    assert args.bg_format == "JP2"
    assert args.workers == 0


def test_parse_args_normalizes_case():
    args = assemble_pdf.parse_args(["p1.tif", "-m", "ccitt", "-b", "png", "-P", "OneColumn"])
    assert args.stencil_format == "CCITT"
    assert args.bg_format == "PNG"
    assert args.pagelayout == "OneColumn"


def test_main_writes_pdf(g4_page, tmp_path, capsys):
    inputs = [str(g4_page(f"p{i}.tif")) for i in range(2)]
    output = tmp_path / "book.pdf"

    with pytest.raises(SystemExit) as excinfo:
        assemble_pdf.main(inputs + ["-o", str(output), "-m", "CCITT", "-L", "0:%R", "--workers", "1"])
    assert excinfo.value.code == 0

    doc = fitz.open(output)
    assert doc.page_count == 2
    assert doc[1].get_label() == "II"
    assert "Pages: 2/2" in capsys.readouterr().out


def test_main_without_usable_inputs(tmp_path, capsys):
    with pytest.raises(SystemExit) as excinfo:
        assemble_pdf.main([str(tmp_path / "missing.tif")])
    assert excinfo.value.code == 1
    assert "File not found" in capsys.readouterr().err


def test_main_rejects_bad_threshold(g4_page):
    with pytest.raises(SystemExit) as excinfo:
        assemble_pdf.main([str(g4_page()), "-t", "300"])
    assert excinfo.value.code == 1
