# schedcalc/core/models.py
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List

UNCATEGORIZED = "uncategorized"

TRANSACTION_TYPES = ("income", "expense", "refund", "uncategorized")
UPLOAD_SOURCES = ("income", "expenses", "both")

# Declared upload source -> transaction type stamped on every parsed row.
SOURCE_TYPES = {
    "income": "income",
    "expenses": "expense",
    "both": "uncategorized",
}


@dataclass
class Transaction:
    id: str
    date: date = None
    vendor: str = ""
    amount: float = 0.0
    card: str = ""
    category: str = UNCATEGORIZED
    purpose: str = ""
    expensable: bool = False
    type: str = "uncategorized"
    source_file: str = ""
    schedule_c_line: int = 0
    is_business: bool = False


@dataclass
class UploadBatch:
    id: str
    filename: str
    source: str
    uploaded: datetime


@dataclass
class VendorRule:
    vendor: str
    category: str
    type: str = "expense"
    expensable: bool = True
    schedule_c_line: int = 0
    id: int = None
    created_at: str = None


@dataclass
class Classification:
    category: str
    schedule_c_line: int
    expensable: bool
    purpose: str = ""
    confidence: float = 0.0


@dataclass
class ParsedCSV:
    """Outcome of parsing one uploaded file; nothing here is persisted yet."""
    transactions: List[Transaction] = field(default_factory=list)
    payments_excluded: int = 0
    rows_skipped: int = 0
    rows_failed: int = 0
    format: str = "generic"

    @property
    def parsed_count(self) -> int:
        return len(self.transactions)


@dataclass
class UploadResult:
    batch: UploadBatch
    stored_path: str
    parsed: ParsedCSV
    persisted: int


@dataclass
class CategorizeResult:
    total: int = 0
    processed: int = 0
    missing: int = 0
    failed: int = 0


@dataclass
class TransactionPage:
    transactions: List[Transaction]
    total: int
    page: int
    page_size: int
