"""Turn an uploaded CSV export into persisted transactions."""

from __future__ import annotations

import csv
import io
import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Dict, List

from schedcalc.config import MAX_UPLOAD_BYTES
from schedcalc.core.errors import EmptyFile, InvalidUpload, PaymentExcluded, RowError, StoreError
from schedcalc.core.models import (
    SOURCE_TYPES,
    UPLOAD_SOURCES,
    ParsedCSV,
    Transaction,
    UploadBatch,
    UploadResult,
)
from schedcalc.database import TransactionStore
from schedcalc.loaders import detect_format, get_loader
from schedcalc.loaders.base import build_header_map
from schedcalc.utils import card_name_from_filename

logger = logging.getLogger(__name__)


def validate_upload(filename: str, size: int, source: str = "expenses",
                    max_bytes: int = MAX_UPLOAD_BYTES) -> None:
    if not filename or not filename.lower().endswith(".csv"):
        raise InvalidUpload("Only CSV files are allowed")
    if size > max_bytes:
        raise InvalidUpload(f"File too large: {size} bytes (limit {max_bytes})")
    if source not in UPLOAD_SOURCES:
        raise InvalidUpload(
            f"Unknown source {source!r}; expected one of {', '.join(UPLOAD_SOURCES)}"
        )


def read_csv_records(content: bytes) -> List[List[str]]:
    """Decode ``content`` (a leading BOM is dropped) and return its non-blank records."""
    text = content.decode("utf-8-sig") if isinstance(content, bytes) else content
    reader = csv.reader(io.StringIO(text))
    return [row for row in reader if any(cell.strip() for cell in row)]


def parse_csv(
    content: bytes,
    source: str,
    original_filename: str,
    file_id: str | None = None,
    config: Dict[str, object] | None = None,
) -> ParsedCSV:
    """Parse one upload into transactions without touching storage.

    The header row picks the row parser once for the whole file. Rows shorter
    than the header are skipped, payment/transfer rows are counted and
    dropped, and rows a parser rejects are logged and skipped.
    """
    records = read_csv_records(content)
    if not records:
        raise EmptyFile("CSV file is empty")

    headers = records[0]
    header_map = build_header_map(headers)
    fmt = detect_format(headers)
    loader = get_loader(fmt, config)
    logger.info("Detected %s format for %s", fmt, original_filename)

    card = card_name_from_filename(original_filename)
    tx_type = SOURCE_TYPES.get(source, "uncategorized")
    result = ParsedCSV(format=fmt)

    for line_no, row in enumerate(records[1:], start=2):
        if len(row) < len(headers):
            logger.debug("Skipping short row %d in %s", line_no, original_filename)
            result.rows_skipped += 1
            continue

        shell = Transaction(
            id=str(uuid.uuid4()),
            card=card,
            type=tx_type,
            source_file=file_id or "",
        )
        try:
            result.transactions.append(loader.parse_row(row, header_map, shell))
        except PaymentExcluded as e:
            logger.info("Excluding payment/transfer: %s", e.description)
            result.payments_excluded += 1
        except RowError as e:
            logger.warning("Skipping row %d in %s: %s", line_no, original_filename, e)
            result.rows_failed += 1

    logger.info(
        "Parsed %d transactions from %s (%d payments excluded, %d skipped, %d failed)",
        result.parsed_count, original_filename, result.payments_excluded,
        result.rows_skipped, result.rows_failed,
    )
    return result


def store_upload(content: bytes, filename: str, file_id: str, uploads_dir: str | Path) -> Path:
    """Keep a copy of the raw upload as ``<file_id>_<filename>`` with spaces replaced."""
    target_dir = Path(uploads_dir)
    target_dir.mkdir(parents=True, exist_ok=True)
    safe_name = Path(filename).name.replace(" ", "_")
    target = target_dir / f"{file_id}_{safe_name}"
    target.write_bytes(content)
    return target


def ingest_upload(
    store: TransactionStore,
    content: bytes,
    filename: str,
    source: str = "expenses",
    config: Dict[str, object] | None = None,
    categorizer=None,
) -> UploadResult:
    """Validate, store, parse and persist an upload.

    When a ``categorizer`` is given, classification of the new rows starts in
    the background once they are saved; its outcome never changes the
    returned result.
    """
    config = config or {}
    source = source or "expenses"
    validate_upload(
        filename, len(content), source,
        int(config.get("max_upload_bytes") or MAX_UPLOAD_BYTES),
    )

    file_id = str(uuid.uuid4())
    stored_path = store_upload(content, filename, file_id, config.get("uploads_dir") or "uploads")
    parsed = parse_csv(content, source, filename, file_id=file_id, config=config)
    persisted = store.save_transactions(parsed.transactions)

    batch = UploadBatch(id=file_id, filename=filename, source=source, uploaded=datetime.now())
    try:
        store.insert_upload_batch(batch)
    except StoreError as e:
        logger.error("Failed to record upload %s: %s", filename, e)

    if categorizer is not None and persisted:
        categorizer.submit()

    return UploadResult(batch=batch, stored_path=str(stored_path), parsed=parsed, persisted=persisted)
