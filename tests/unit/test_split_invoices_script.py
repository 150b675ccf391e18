"""Unit tests for the split_invoices script."""

import io
import json
import sys
from pathlib import Path
from unittest.mock import patch

import pytest
from pypdf import PdfWriter

from invoice_ingest.extraction.json_repair import InvalidOCRResponseError
from scripts.split_invoices import main, split_to_directory


def make_pdf(page_count: int) -> bytes:
    writer = PdfWriter()
    for _ in range(page_count):
        writer.add_blank_page(width=200, height=200)
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


@pytest.fixture
def inputs(tmp_path: Path) -> tuple[Path, Path]:
    ocr = tmp_path / "response.json"
    ocr.write_text(
        json.dumps(
            {
                "documentType": "multiple",
                "invoiceCount": 3,
                "invoices": [
                    {"invoiceNumber": "S-1", "pageNumbers": [1]},
                    {"invoiceNumber": "S-2", "pageNumbers": [2, 3]},
                    {"pageNumber": 4},
                ],
            }
        ),
        encoding="utf-8",
    )
    pdf = tmp_path / "statement.pdf"
    pdf.write_bytes(make_pdf(4))
    return ocr, pdf


def test_split_to_directory(inputs: tuple[Path, Path], tmp_path: Path) -> None:
    ocr, pdf = inputs
    out_dir = tmp_path / "out"

    manifest = split_to_directory(ocr, pdf, out_dir)

    assert [entry["invoice_number"] for entry in manifest] == ["S-1", "S-2", ""]
    assert [entry["num_pages"] for entry in manifest] == [1, 2, 1]
    assert manifest[1]["pages"] == [2, 3]
    assert Path(manifest[0]["out_pdf"]).name == "INV_S_1_S1.pdf"
    assert Path(manifest[2]["out_pdf"]).name == "INV_INV_3_invoice3.pdf"
    assert all(Path(entry["out_pdf"]).exists() for entry in manifest)


def test_truncated_ocr_file_is_salvaged(inputs: tuple[Path, Path], tmp_path: Path) -> None:
    ocr, pdf = inputs
    text = ocr.read_text(encoding="utf-8")
    ocr.write_text(text[: text.index('{"pageNumber"')], encoding="utf-8")

    manifest = split_to_directory(ocr, pdf, tmp_path / "out")

    assert [entry["invoice_number"] for entry in manifest] == ["S-1", "S-2"]


def test_unusable_ocr_file(inputs: tuple[Path, Path], tmp_path: Path) -> None:
    ocr, pdf = inputs
    ocr.write_text('{"documentType": "sin', encoding="utf-8")

    with pytest.raises(InvalidOCRResponseError):
        split_to_directory(ocr, pdf, tmp_path / "out")


def test_main_writes_manifest(
    inputs: tuple[Path, Path], tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    ocr, pdf = inputs
    manifest_path = tmp_path / "manifest.json"
    argv = [
        "split_invoices.py",
        "--ocr",
        str(ocr),
        "--pdf",
        str(pdf),
        "--out-dir",
        str(tmp_path / "out"),
        "--manifest",
        str(manifest_path),
    ]

    with patch.object(sys, "argv", argv):
        main()

    manifest = json.loads(manifest_path.read_text(encoding="utf-8"))
    assert len(manifest) == 3
    assert json.loads(capsys.readouterr().out) == manifest
