from pathlib import Path

import pytest

from schedcalc.core.errors import EmptyFile, InvalidUpload, StoreError
from schedcalc.ingest import ingest_upload, parse_csv, read_csv_records, validate_upload

CHASE_CSV = (
    "Status,Date,Description,Debit,Credit\n"
    "Cleared,01/15/2024,COFFEE SHOP,4.50,\n"
    "Cleared,01/16/2024,ONLINE PAYMENT THANK YOU,,500.00\n"
    "Cleared,01/17/2024,AplPay OFFICE DEPOT TX,89.99,\n"
    "Cleared,01/18/2024,REFUND STORE,,12.00\n"
).encode()


class RecordingCategorizer:
    def __init__(self):
        self.submitted = 0

    def submit(self):
        self.submitted += 1


def test_parse_csv_single_chase_row():
    content = b"Status,Date,Description,Debit,Credit\nCleared,01/15/2024,COFFEE SHOP,4.50,\n"
    parsed = parse_csv(content, "expenses", "my_card.csv", file_id="file-1")

    assert parsed.format == "chase"
    assert parsed.parsed_count == 1
    tx = parsed.transactions[0]
    assert tx.vendor == "COFFEE SHOP"
    assert tx.amount == 4.5
    assert tx.type == "expense"
    assert tx.expensable is True
    assert tx.card == "my card"
    assert tx.source_file == "file-1"


def test_parse_csv_counts_payments_and_signs_amounts():
    parsed = parse_csv(CHASE_CSV, "expenses", "chase.csv")

    assert parsed.payments_excluded == 1
    assert parsed.parsed_count == 3
    assert all("PAYMENT" not in tx.vendor for tx in parsed.transactions)
    amounts = {tx.vendor: tx.amount for tx in parsed.transactions}
    assert amounts == {"COFFEE SHOP": 4.5, "OFFICE DEPOT": 89.99, "REFUND STORE": -12.0}
    assert len({tx.id for tx in parsed.transactions}) == 3


def test_parse_csv_excludes_amex_payments():
    content = (
        "Date,Description,Amount,Extended Details,Category\n"
        "03/02/2024,DELTA AIR LINES,312.40,details,Travel-Airline\n"
        "03/04/2024,ONLINE PAYMENT THANK YOU,-1500.00,,\n"
    ).encode()
    parsed = parse_csv(content, "expenses", "amex.csv")

    assert parsed.format == "amex"
    assert parsed.payments_excluded == 1
    assert [tx.vendor for tx in parsed.transactions] == ["DELTA AIR LINES"]


def test_parse_csv_skips_short_and_invalid_rows():
    content = (
        "Status,Date,Description,Debit,Credit\n"
        "Cleared,01/15/2024\n"
        "Cleared,someday,SHOP,1.00,\n"
        "Cleared,01/15/2024,GOOD SHOP,2.00,\n"
    ).encode()
    parsed = parse_csv(content, "expenses", "chase.csv")

    assert parsed.rows_skipped == 1
    assert parsed.rows_failed == 1
    assert [tx.vendor for tx in parsed.transactions] == ["GOOD SHOP"]


def test_parse_csv_tolerates_bom_and_blank_lines():
    content = b"\xef\xbb\xbfDate,Description,Amount\n\n2024-02-01,HARDWARE STORE,15.25\n\n"
    parsed = parse_csv(content, "expenses", "bank.csv")
    assert parsed.format == "generic"
    assert parsed.parsed_count == 1
    assert parsed.transactions[0].amount == 15.25


def test_parse_csv_stamps_type_from_source():
    content = b"Date,Description,Amount\n2024-02-01,CLIENT CO,1000.00\n"
    income = parse_csv(content, "income", "bank.csv").transactions[0]
    assert income.type == "income"
    assert income.expensable is False

    both = parse_csv(content, "both", "bank.csv").transactions[0]
    assert both.type == "uncategorized"
    assert both.expensable is False


def test_parse_csv_empty_file():
    with pytest.raises(EmptyFile):
        parse_csv(b"", "expenses", "empty.csv")
    with pytest.raises(EmptyFile):
        parse_csv(b"\n\n", "expenses", "empty.csv")


def test_parse_csv_header_only():
    parsed = parse_csv(b"Date,Description,Amount\n", "expenses", "bank.csv")
    assert parsed.parsed_count == 0


def test_read_csv_records_handles_quoted_commas():
    records = read_csv_records(b'Date,Description,Amount\n2024-01-01,"ACME, INC",5\n')
    assert records[1] == ["2024-01-01", "ACME, INC", "5"]


def test_validate_upload():
    validate_upload("statement.CSV", 100)
    with pytest.raises(InvalidUpload):
        validate_upload("statement.xlsx", 100)
    with pytest.raises(InvalidUpload):
        validate_upload("statement.csv", (10 << 20) + 1)
    with pytest.raises(InvalidUpload):
        validate_upload("statement.csv", 100, source="savings")


def test_ingest_upload_persists_parsed_rows(store, tmp_path):
    config = {"uploads_dir": str(tmp_path / "uploads")}
    categorizer = RecordingCategorizer()

    result = ingest_upload(store, CHASE_CSV, "my card.csv", config=config, categorizer=categorizer)

    assert result.persisted == result.parsed.parsed_count == 3
    stored = store.fetch_transactions(result.batch.id)
    assert len(stored) == 3
    assert {tx.vendor for tx in stored} == {"COFFEE SHOP", "OFFICE DEPOT", "REFUND STORE"}

    path = Path(result.stored_path)
    assert path.name == f"{result.batch.id}_my_card.csv"
    assert path.read_bytes() == CHASE_CSV

    batches = store.list_upload_batches()
    assert [(b.id, b.source) for b in batches] == [(result.batch.id, "expenses")]
    assert categorizer.submitted == 1


class BatchRecordFailingStore:
    def __init__(self, store):
        self._store = store

    def __getattr__(self, name):
        return getattr(self._store, name)

    def insert_upload_batch(self, batch):
        raise StoreError("disk I/O error")


def test_ingest_upload_survives_batch_record_failure(store, tmp_path):
    config = {"uploads_dir": str(tmp_path / "uploads")}

    result = ingest_upload(BatchRecordFailingStore(store), CHASE_CSV, "chase.csv", config=config)

    assert result.persisted == 3
    assert len(store.fetch_transactions()) == 3
    assert store.list_upload_batches() == []


def test_ingest_upload_rejects_before_storing(store, tmp_path):
    config = {"uploads_dir": str(tmp_path / "uploads")}
    with pytest.raises(InvalidUpload):
        ingest_upload(store, CHASE_CSV, "statement.pdf", config=config)
    assert not (tmp_path / "uploads").exists()
    assert store.fetch_transactions() == []
