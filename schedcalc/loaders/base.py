# schedcalc/loaders/base.py
from abc import ABC, abstractmethod

from schedcalc.core.errors import MissingRequiredField, PaymentExcluded
from schedcalc.utils import extract_vendor_name, is_payment_transaction, parse_date


def build_header_map(headers):
    """Map lower-cased, stripped header names to their column index."""
    return {h.strip().lower(): idx for idx, h in enumerate(headers)}


class BaseLoader(ABC):
    @abstractmethod
    def parse_row(self, row, header_map, tx):
        """
        Fill ``tx`` (id, source_file, card and type already set) from one
        CSV row and return it.
        Raises PaymentExcluded for payment/transfer rows and a RowError
        subclass when the row cannot be used.
        """
        pass

    @staticmethod
    def cell(row, header_map, name):
        idx = header_map.get(name)
        if idx is None or idx >= len(row):
            return ""
        return row[idx].strip()

    def read_description(self, row, header_map, tx):
        description = self.cell(row, header_map, "description")
        if is_payment_transaction(description):
            raise PaymentExcluded(description)
        tx.vendor = extract_vendor_name(description)
        if not tx.vendor:
            raise MissingRequiredField("Missing required field: description")

    def read_date(self, row, header_map, tx):
        raw = self.cell(row, header_map, "date")
        if not raw:
            raise MissingRequiredField("Missing required field: date")
        tx.date = parse_date(raw)

    @staticmethod
    def finish(tx):
        tx.purpose = ""
        tx.expensable = tx.amount > 0 and tx.type == "expense"
        return tx
