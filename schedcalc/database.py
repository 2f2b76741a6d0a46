import logging
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

from schedcalc.core.categories import SCHEDULE_C_CATEGORIES, ScheduleCCategory
from schedcalc.core.errors import StoreError
from schedcalc.core.models import (
    UNCATEGORIZED,
    Classification,
    Transaction,
    TransactionPage,
    UploadBatch,
    VendorRule,
)

logger = logging.getLogger(__name__)

_TX_COLUMNS = (
    "id, date, vendor, amount, card, category, purpose, expensable, "
    "type, source_file, schedule_c_line, is_business"
)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS transactions (
        id TEXT PRIMARY KEY,
        date TEXT NOT NULL,
        vendor TEXT NOT NULL,
        amount REAL NOT NULL,
        card TEXT,
        category TEXT,
        purpose TEXT,
        expensable INTEGER DEFAULT 0,
        type TEXT,
        source_file TEXT,
        schedule_c_line INTEGER DEFAULT 0,
        is_business INTEGER DEFAULT 0,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS csv_files (
        id TEXT PRIMARY KEY,
        filename TEXT,
        uploaded TEXT,
        source TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS vendor_rules (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        vendor TEXT UNIQUE,
        type TEXT,
        expensable INTEGER,
        category TEXT,
        schedule_c_line INTEGER DEFAULT 0,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS deduction_data (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        business_miles INTEGER DEFAULT 0,
        home_office_sqft INTEGER DEFAULT 0,
        total_home_sqft INTEGER DEFAULT 0,
        use_simplified INTEGER DEFAULT 1,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS schedule_c_categories (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        line_number INTEGER NOT NULL,
        description TEXT NOT NULL
    )
    """,
)

_CLEARABLE_TABLES = ("transactions", "csv_files", "vendor_rules", "deduction_data")

_SORT_CLAUSES: Dict[str, Tuple[str, str]] = {
    # sort key -> (ascending clause, descending clause)
    "amount": ("ABS(amount) ASC", "ABS(amount) DESC"),
    "vendor": ("vendor ASC", "vendor DESC"),
    "date": ("date ASC", "date DESC"),
    "category": ("category ASC", "category DESC"),
    "business": ("is_business ASC, date DESC", "is_business DESC, date DESC"),
}
_DEFAULT_SORT_DIR = {
    "amount": "desc",
    "vendor": "asc",
    "date": "desc",
    "category": "asc",
    "business": "desc",
}


class TransactionStore(Protocol):
    """The storage operations the ingestion and classification code depend on.

    Implementations report backend failures as ``StoreError``.
    """

    def insert_transaction(self, tx: Transaction) -> None: ...

    def save_transactions(self, transactions: Iterable[Transaction]) -> int: ...

    def insert_upload_batch(self, batch: UploadBatch) -> None: ...

    def fetch_classification_candidates(self) -> List[Transaction]: ...

    def fetch_uncategorized(self) -> List[Transaction]: ...

    def update_classification(self, tx_id: str, classification: Classification) -> None: ...

    def update_manual(
        self,
        tx_id: str,
        category: str | None = None,
        purpose: str | None = None,
        expensable: bool | None = None,
        schedule_c_line: int | None = None,
    ) -> bool: ...

    def apply_rule_to_transaction(self, tx_id: str, rule: VendorRule) -> None: ...

    def list_vendor_rules(self) -> List[VendorRule]: ...


def _row_to_tx(row: Sequence) -> Transaction:
    return Transaction(
        id=row[0],
        date=date.fromisoformat(row[1]),
        vendor=row[2],
        amount=float(row[3]),
        card=row[4] or "",
        category=row[5] if row[5] is not None else UNCATEGORIZED,
        purpose=row[6] or "",
        expensable=bool(row[7]),
        type=row[8] or "uncategorized",
        source_file=row[9] or "",
        schedule_c_line=int(row[10] or 0),
        is_business=bool(row[11]),
    )


def _row_to_rule(row: Sequence) -> VendorRule:
    return VendorRule(
        id=row[0],
        vendor=row[1],
        type=row[2],
        expensable=bool(row[3]),
        category=row[4],
        schedule_c_line=int(row[5] or 0),
        created_at=row[6],
    )


class SQLiteStore:
    """SQLite-backed storage for transactions, uploads, rules and deductions.

    Every call opens its own connection, so one store can be shared between
    the request path and the background categorizer thread.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = str(db_path)
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)

    @contextmanager
    def _connect(self):
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open database {self.db_path}: {e}") from e
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def insert_transaction(self, tx: Transaction) -> None:
        with self._connect() as conn:
            conn.execute(
                f"INSERT INTO transactions ({_TX_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    tx.id,
                    tx.date.isoformat(),
                    tx.vendor,
                    float(tx.amount),
                    tx.card,
                    tx.category,
                    tx.purpose,
                    int(tx.expensable),
                    tx.type,
                    tx.source_file,
                    tx.schedule_c_line,
                    int(tx.is_business),
                ),
            )

    def save_transactions(self, transactions: Iterable[Transaction]) -> int:
        """Insert transactions one by one and return how many were stored.

        A failing row is logged and skipped; rows already written stay
        written. There is no batch-level rollback.
        """
        saved = 0
        for tx in transactions:
            try:
                self.insert_transaction(tx)
            except StoreError as e:
                logger.error("Failed to insert transaction %s: %s", tx.id, e)
                continue
            saved += 1
        logger.info("Saved %d transactions to database", saved)
        return saved

    def insert_upload_batch(self, batch: UploadBatch) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO csv_files (id, filename, uploaded, source) VALUES (?, ?, ?, ?)",
                (batch.id, batch.filename, batch.uploaded.isoformat(), batch.source),
            )

    def list_upload_batches(self) -> List[UploadBatch]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id, filename, uploaded, source FROM csv_files ORDER BY uploaded"
            ).fetchall()
        return [
            UploadBatch(id=r[0], filename=r[1], uploaded=datetime.fromisoformat(r[2]), source=r[3])
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_transaction(self, tx_id: str) -> Optional[Transaction]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_TX_COLUMNS} FROM transactions WHERE id = ?", (tx_id,)
            ).fetchone()
        return _row_to_tx(row) if row else None

    def fetch_transactions(self, source_file: str | None = None) -> List[Transaction]:
        query = f"SELECT {_TX_COLUMNS} FROM transactions"
        params: list = []
        if source_file:
            query += " WHERE source_file = ?"
            params.append(source_file)
        query += " ORDER BY date, created_at"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_tx(r) for r in rows]

    def query_transactions(
        self,
        *,
        high_value: bool = False,
        threshold: float = 100.0,
        tx_type: str | None = None,
        card: str | None = None,
        category: str | None = None,
        search: str | None = None,
        recurring: bool = False,
        sort_by: str | None = None,
        sort_dir: str | None = None,
        page: int = 1,
        page_size: int = 50,
        unlimited: bool = False,
    ) -> TransactionPage:
        """Filter, sort and paginate transactions.

        Parameters
        ----------
        high_value:
            Only rows whose absolute amount is at least ``threshold``.
        tx_type:
            ``income``, ``expense`` or ``uncategorized``; other values are ignored.
        search:
            Substring matched against vendor and purpose.
        recurring:
            Only vendors that appear more than once.
        sort_by, sort_dir:
            One of ``amount`` (absolute), ``vendor``, ``date``, ``category``,
            ``business``; unknown keys fall back to newest first.
        page, page_size:
            1-based page; ``page_size`` outside 1..200 falls back to 50.
            ``unlimited`` returns every match on a single page.
        """
        conditions: list[str] = []
        params: list = []
        if high_value:
            conditions.append("ABS(amount) >= ?")
            params.append(threshold)
        if tx_type in ("income", "expense", "uncategorized"):
            conditions.append("type = ?")
            params.append(tx_type)
        if card:
            conditions.append("card = ?")
            params.append(card)
        if category:
            conditions.append("category = ?")
            params.append(category)
        if search:
            conditions.append("(vendor LIKE ? OR purpose LIKE ?)")
            term = f"%{search}%"
            params.extend([term, term])
        if recurring:
            conditions.append(
                "vendor IN (SELECT vendor FROM transactions GROUP BY vendor HAVING COUNT(*) > 1)"
            )
        where = " WHERE " + " AND ".join(conditions) if conditions else ""

        if sort_by in _SORT_CLAUSES:
            direction = sort_dir if sort_dir in ("asc", "desc") else _DEFAULT_SORT_DIR[sort_by]
            asc_clause, desc_clause = _SORT_CLAUSES[sort_by]
            order = asc_clause if direction == "asc" else desc_clause
        else:
            order = "date DESC"

        if page < 1:
            page = 1
        if not 1 <= page_size <= 200:
            page_size = 50

        with self._connect() as conn:
            total = conn.execute(
                f"SELECT COUNT(*) FROM transactions{where}", params
            ).fetchone()[0]
            query = f"SELECT {_TX_COLUMNS} FROM transactions{where} ORDER BY {order}"
            query_params = list(params)
            if unlimited:
                page = 1
                page_size = max(int(total), 1)
            else:
                query += " LIMIT ? OFFSET ?"
                query_params.extend([page_size, (page - 1) * page_size])
            rows = conn.execute(query, query_params).fetchall()

        return TransactionPage(
            transactions=[_row_to_tx(r) for r in rows],
            total=int(total),
            page=page,
            page_size=page_size,
        )

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    _CANDIDATE_WHERE = (
        "is_business = 1 AND (category = 'uncategorized' OR category = '' "
        "OR category IS NULL OR schedule_c_line = 0)"
    )

    def fetch_classification_candidates(self) -> List[Transaction]:
        """Business transactions still lacking a category or a Schedule C line."""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_TX_COLUMNS} FROM transactions WHERE {self._CANDIDATE_WHERE} "
                "ORDER BY date DESC"
            ).fetchall()
        return [_row_to_tx(r) for r in rows]

    def count_classification_candidates(self) -> int:
        with self._connect() as conn:
            return conn.execute(
                f"SELECT COUNT(*) FROM transactions WHERE {self._CANDIDATE_WHERE}"
            ).fetchone()[0]

    def count_business(self) -> int:
        with self._connect() as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM transactions WHERE is_business = 1"
            ).fetchone()[0]

    def fetch_uncategorized(self) -> List[Transaction]:
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_TX_COLUMNS} FROM transactions "
                "WHERE category = 'uncategorized' OR category = '' OR category IS NULL "
                "ORDER BY date"
            ).fetchall()
        return [_row_to_tx(r) for r in rows]

    def update_classification(self, tx_id: str, classification: Classification) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE transactions
                SET category = ?, purpose = ?, expensable = ?, schedule_c_line = ?
                WHERE id = ?
                """,
                (
                    classification.category,
                    classification.purpose,
                    int(classification.expensable),
                    classification.schedule_c_line,
                    tx_id,
                ),
            )

    def update_manual(
        self,
        tx_id: str,
        category: str | None = None,
        purpose: str | None = None,
        expensable: bool | None = None,
        schedule_c_line: int | None = None,
    ) -> bool:
        """Overwrite only the given fields; returns False when the id is unknown."""
        with self._connect() as conn:
            cur = conn.execute(
                """
                UPDATE transactions
                SET category = COALESCE(?, category),
                    purpose = COALESCE(?, purpose),
                    expensable = COALESCE(?, expensable),
                    schedule_c_line = COALESCE(?, schedule_c_line)
                WHERE id = ?
                """,
                (
                    category or None,
                    purpose or None,
                    None if expensable is None else int(expensable),
                    schedule_c_line,
                    tx_id,
                ),
            )
            return cur.rowcount > 0

    # ------------------------------------------------------------------
    # Vendor rules
    # ------------------------------------------------------------------

    def upsert_vendor_rule(self, rule: VendorRule) -> VendorRule:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO vendor_rules (vendor, type, expensable, category, schedule_c_line)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(vendor) DO UPDATE SET
                    type = excluded.type,
                    expensable = excluded.expensable,
                    category = excluded.category,
                    schedule_c_line = excluded.schedule_c_line
                """,
                (rule.vendor, rule.type, int(rule.expensable), rule.category, rule.schedule_c_line),
            )
            row = conn.execute(
                "SELECT id, vendor, type, expensable, category, schedule_c_line, created_at "
                "FROM vendor_rules WHERE vendor = ?",
                (rule.vendor,),
            ).fetchone()
        return _row_to_rule(row)

    def list_vendor_rules(self) -> List[VendorRule]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id, vendor, type, expensable, category, schedule_c_line, created_at "
                "FROM vendor_rules ORDER BY id"
            ).fetchall()
        return [_row_to_rule(r) for r in rows]

    def apply_rule_to_transaction(self, tx_id: str, rule: VendorRule) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE transactions
                SET category = ?, expensable = ?, schedule_c_line = ?, type = ?
                WHERE id = ?
                """,
                (rule.category, int(rule.expensable), rule.schedule_c_line, rule.type, tx_id),
            )

    # ------------------------------------------------------------------
    # User toggles and maintenance
    # ------------------------------------------------------------------

    def set_business(self, tx_id: str, is_business: bool) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE transactions SET is_business = ? WHERE id = ?",
                (int(is_business), tx_id),
            )
            return cur.rowcount > 0

    def set_business_bulk(
        self,
        is_business: bool,
        ids: Sequence[str] | None = None,
        card: str | None = None,
        tx_type: str | None = None,
    ) -> int:
        """Set the business flag on a list of ids, or on every row matching the filters."""
        params: list = [int(is_business)]
        if ids:
            placeholders = ",".join("?" for _ in ids)
            query = f"UPDATE transactions SET is_business = ? WHERE id IN ({placeholders})"
            params.extend(ids)
        else:
            conditions: list[str] = []
            if card:
                conditions.append("card = ?")
                params.append(card)
            if tx_type:
                conditions.append("type = ?")
                params.append(tx_type)
            query = "UPDATE transactions SET is_business = ?"
            if conditions:
                query += " WHERE " + " AND ".join(conditions)
        with self._connect() as conn:
            return conn.execute(query, params).rowcount

    def fix_income_transactions(self) -> Tuple[int, int]:
        """Re-type every income row as an expense. Returns (income rows before, rows fixed)."""
        with self._connect() as conn:
            before = conn.execute(
                "SELECT COUNT(*) FROM transactions WHERE type = 'income'"
            ).fetchone()[0]
            fixed = conn.execute(
                "UPDATE transactions SET type = 'expense', expensable = (amount > 0) "
                "WHERE type = 'income'"
            ).rowcount
        return before, fixed

    def clear_all_data(self) -> List[Dict[str, object]]:
        cleared = []
        with self._connect() as conn:
            for table in _CLEARABLE_TABLES:
                original = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
                deleted = conn.execute(f"DELETE FROM {table}").rowcount
                cleared.append(
                    {"table": table, "deleted_count": deleted, "original_count": original}
                )
            conn.execute(
                "DELETE FROM sqlite_sequence WHERE name IN ('vendor_rules', 'schedule_c_categories')"
            )
        return cleared

    # ------------------------------------------------------------------
    # Schedule C categories
    # ------------------------------------------------------------------

    def list_categories(self) -> List[ScheduleCCategory]:
        """Return the Schedule C categories, seeding the table on first use."""
        with self._connect() as conn:
            count = conn.execute("SELECT COUNT(*) FROM schedule_c_categories").fetchone()[0]
            if count == 0:
                conn.executemany(
                    "INSERT INTO schedule_c_categories (name, line_number, description) "
                    "VALUES (?, ?, ?)",
                    [(c.name, c.line_number, c.description) for c in SCHEDULE_C_CATEGORIES],
                )
            rows = conn.execute(
                "SELECT name, line_number, description FROM schedule_c_categories "
                "ORDER BY line_number"
            ).fetchall()
        return [ScheduleCCategory(*r) for r in rows]

    # ------------------------------------------------------------------
    # Deductions
    # ------------------------------------------------------------------

    def get_deduction_data(self) -> Optional[Dict[str, object]]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT business_miles, home_office_sqft, total_home_sqft, use_simplified, "
                "updated_at FROM deduction_data WHERE id = 1"
            ).fetchone()
        if row is None:
            return None
        return {
            "business_miles": int(row[0] or 0),
            "home_office_sqft": int(row[1] or 0),
            "total_home_sqft": int(row[2] or 0),
            "use_simplified": bool(row[3]),
            "updated_at": row[4],
        }

    def save_vehicle_miles(self, business_miles: int) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO deduction_data (id, business_miles, updated_at)
                VALUES (1, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(id) DO UPDATE SET
                    business_miles = excluded.business_miles,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (business_miles,),
            )

    def save_home_office(self, home_office_sqft: int, total_home_sqft: int, use_simplified: bool) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO deduction_data (id, home_office_sqft, total_home_sqft, use_simplified, updated_at)
                VALUES (1, ?, ?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(id) DO UPDATE SET
                    home_office_sqft = excluded.home_office_sqft,
                    total_home_sqft = excluded.total_home_sqft,
                    use_simplified = excluded.use_simplified,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (home_office_sqft, total_home_sqft, int(use_simplified)),
            )

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    def sum_income(self, *, business_only: bool = False) -> float:
        """Sum of |amount| over income rows (expensable ones, or business ones)."""
        flag = "is_business = 1" if business_only else "expensable = 1"
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT COALESCE(SUM(ABS(amount)), 0.0) FROM transactions "
                f"WHERE type = 'income' AND {flag}"
            ).fetchone()
        return float(row[0] or 0.0)

    def expense_totals_by_line(self, *, business_only: bool = False) -> Dict[int, float]:
        flag = "is_business = 1" if business_only else "expensable = 1"
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT schedule_c_line, SUM(ABS(amount))
                FROM transactions
                WHERE type = 'expense' AND {flag} AND schedule_c_line > 0
                GROUP BY schedule_c_line
                ORDER BY schedule_c_line
                """
            ).fetchall()
        return {int(r[0]): float(r[1] or 0.0) for r in rows}

    def transaction_counts(self) -> Dict[str, int]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT
                    COUNT(CASE WHEN type = 'income' AND expensable = 1 THEN 1 END),
                    COUNT(CASE WHEN type = 'expense' AND expensable = 1 THEN 1 END),
                    COUNT(CASE WHEN category = 'uncategorized' THEN 1 END),
                    COUNT(CASE WHEN type = 'income' AND is_business = 1 THEN 1 END),
                    COUNT(CASE WHEN type = 'expense' AND is_business = 1 THEN 1 END),
                    COUNT(CASE WHEN is_business = 0 THEN 1 END)
                FROM transactions
                """
            ).fetchone()
        keys = (
            "income_transactions",
            "expense_transactions",
            "uncategorized_transactions",
            "business_income_transactions",
            "business_expense_transactions",
            "personal_transactions",
        )
        return {k: int(v or 0) for k, v in zip(keys, row)}
