"""
Diagnostic script for statement extraction.

Checks:
1. Text layer presence (native vs scanned) per page.
2. Table regions and the reconciled column layout.
3. Stitched transactions and the balance verdict.

Usage:
    python scripts/debug_extraction.py statement.pdf [more.pdf ...]
"""
import argparse
import os
import sys
from pathlib import Path

import pdfplumber
import structlog

structlog.configure(
    processors=[
        structlog.processors.JSONRenderer(sort_keys=True)
    ]
)

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from ledgerline.pipeline.column_reconciler import reconcile_columns  # noqa: E402
from ledgerline.pipeline.extraction import get_token_extractor  # noqa: E402
from ledgerline.pipeline.orchestrator import process_tokens  # noqa: E402
from ledgerline.pipeline.table_detection import get_table_detector  # noqa: E402


def diagnose_pdf(pdf_path: Path, show_rows: int) -> None:
    print(f"\n--- Diagnosing: {pdf_path.name} ---")

    if not pdf_path.exists():
        print(f"File not found: {pdf_path}")
        return

    print("Checking text layer...")
    with pdfplumber.open(pdf_path) as pdf:
        if not pdf.pages:
            print("  No pages found!")
            return
        for number, page in enumerate(pdf.pages, start=1):
            text = page.extract_text() or ""
            kind = "NATIVE" if len(text) >= 50 else "SCANNED or low text (OCR required)"
            print(f"  Page {number}: {len(text)} chars -> {kind}")

    extracted = get_token_extractor().extract(pdf_path)

    print("\nTable detection...")
    detection = get_table_detector().detect_tables(extracted.pages)
    print(f"  Lines: {len(detection.lines)}, regions: {len(detection.tables)}, confidence: {detection.confidence:.2f}")
    for table in detection.tables:
        layout = ", ".join(f"{c.inferred_type.value}@{c.center_x:.0f}" for c in table.columns)
        print(f"    Region {table.table_index} pages {table.page_numbers}: {layout}")
    for warning in detection.warnings:
        print(f"  ! {warning}")

    if detection.tables:
        outcome = reconcile_columns(detection.tables)
        print("  Reconciled: " + ", ".join(t.value for t in outcome.column_types))
        for conflict in outcome.report.conflicts:
            print(f"  ~ {conflict.resolution}")

    print("\nPipeline...")
    result = process_tokens(extracted)
    document = result.document
    print(f"  Transactions: {document.total_transactions}, balance: {document.overall_validation.value}")
    for segment in document.segments:
        print(
            f"    Segment {segment.index}: opening {segment.opening_balance} closing {segment.closing_balance}"
            f" computed {segment.computed_closing} -> {segment.overall_validation.value}"
        )
    for transaction in document.raw_transactions[:show_rows]:
        print(
            f"    {transaction.date} | {transaction.description[:40]:40} | "
            f"-{transaction.debit or ''} +{transaction.credit or ''} = {transaction.balance} "
            f"[{transaction.validation_status.value}, {transaction.grade.value}]"
        )
    for warning in result.warnings:
        print(f"  ! {warning}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Diagnose statement extraction")
    parser.add_argument("pdfs", nargs="+", type=Path)
    parser.add_argument("--rows", type=int, default=10, help="Transactions to print per file")
    args = parser.parse_args()
    for path in args.pdfs:
        diagnose_pdf(path, args.rows)
