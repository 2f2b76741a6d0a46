# schedcalc/loaders/chase.py

from schedcalc.core.errors import InvalidAmount
from schedcalc.core.models import UNCATEGORIZED
from schedcalc.loaders.base import BaseLoader
from schedcalc.utils import parse_amount


class ChaseLoader(BaseLoader):
    """
    Row parser for columnar debit/credit exports.

    Expected CSV headers (case-insensitive):
      - Status          (ignored)
      - Date
      - Description
      - Debit           money out, stored positive
      - Credit          money in, stored negative

    When both Debit and Credit hold a value the debit wins. Cells that do
    not parse as numbers are treated as empty; a row with neither amount
    is kept with amount 0.
    """

    def parse_row(self, row, header_map, tx):
        self.read_description(row, header_map, tx)
        self.read_date(row, header_map, tx)

        debit = self._optional_amount(row, header_map, "debit")
        credit = self._optional_amount(row, header_map, "credit")
        if debit is not None:
            tx.amount = abs(debit)
        elif credit is not None:
            tx.amount = -abs(credit)
        else:
            tx.amount = 0.0

        tx.category = UNCATEGORIZED
        return self.finish(tx)

    def _optional_amount(self, row, header_map, name):
        raw = self.cell(row, header_map, name)
        if not raw:
            return None
        try:
            return parse_amount(raw)
        except InvalidAmount:
            return None
