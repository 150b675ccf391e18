#!/usr/bin/env python3
"""Split a multi-invoice PDF using a saved OCR response.

Reads the JSON returned by POST /api/v1/ocr (or the raw, possibly truncated
model output) and writes one PDF per invoice, named like the attachments
sent to Odoo.

Usage:
    python scripts/split_invoices.py --ocr response.json --pdf statement.pdf --out-dir split_out
"""

import argparse
import json
import logging
from pathlib import Path
from typing import Any

from invoice_ingest.accounting.payload import attachment_filename
from invoice_ingest.extraction.json_repair import parse_ocr_response
from invoice_ingest.pdf.splitter import build_selections, count_pages, split_pdf_by_invoices

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)


def split_to_directory(ocr_path: Path, pdf_path: Path, out_dir: Path) -> list[dict[str, Any]]:
    """Write one PDF per extracted invoice.

    Args:
        ocr_path: File holding the OCR response JSON
        pdf_path: Source PDF the response was extracted from
        out_dir: Output directory (created if missing)

    Returns:
        Manifest entries with invoice number, output path and page count

    Raises:
        FileNotFoundError: If an input file doesn't exist
        TruncatedResponseError: If the OCR response holds no usable invoice
        PdfSplitError: If the PDF cannot be read
    """
    response = parse_ocr_response(ocr_path.read_text(encoding="utf-8"))
    source = pdf_path.read_bytes()

    selections = build_selections(response.invoices)
    split = split_pdf_by_invoices(source, selections)

    out_dir.mkdir(parents=True, exist_ok=True)
    manifest: list[dict[str, Any]] = []

    for index, (invoice, selection) in enumerate(zip(response.invoices, selections, strict=True)):
        data = split.get(selection.key, source)
        out_pdf = out_dir / attachment_filename(invoice, index, selection.key)
        out_pdf.write_bytes(data)

        manifest.append(
            {
                "invoice_number": invoice.invoice_number,
                "out_pdf": str(out_pdf),
                "pages": selection.requested_pages(),
                "num_pages": count_pages(data),
            }
        )
        logger.info(f"Wrote {out_pdf}")

    return manifest


def main() -> None:
    parser = argparse.ArgumentParser(description="Split a PDF into per-invoice PDFs")
    parser.add_argument("--ocr", type=Path, required=True, help="OCR response JSON file")
    parser.add_argument("--pdf", type=Path, required=True, help="Source PDF")
    parser.add_argument(
        "--out-dir",
        type=Path,
        default=Path("split_out"),
        help="Output directory",
    )
    parser.add_argument(
        "--manifest",
        type=Path,
        default=None,
        help="Optional path to write the manifest JSON",
    )

    args = parser.parse_args()

    manifest = split_to_directory(args.ocr, args.pdf, args.out_dir)

    if args.manifest:
        with open(args.manifest, "w", encoding="utf-8") as f:
            json.dump(manifest, f, indent=2)

    print(json.dumps(manifest, indent=2))


if __name__ == "__main__":
    main()
