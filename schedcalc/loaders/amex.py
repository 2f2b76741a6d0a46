# schedcalc/loaders/amex.py

from schedcalc.core.models import UNCATEGORIZED
from schedcalc.loaders.base import BaseLoader
from schedcalc.utils import parse_amount


class AmexLoader(BaseLoader):
    """
    Row parser for signed-amount exports that carry their own category.

    CSV header (case-insensitive):
    Date, Description, Card Member, Account #, Amount, Extended Details,
    Appears On Your Statement As, Address, City/State, Zip Code, Country,
    Reference, Category

    Amount is already signed the way we store it: charges positive,
    credits and refunds negative.
    """

    def parse_row(self, row, header_map, tx):
        self.read_description(row, header_map, tx)
        self.read_date(row, header_map, tx)

        tx.amount = parse_amount(self.cell(row, header_map, "amount"))
        tx.category = self.cell(row, header_map, "category") or UNCATEGORIZED
        return self.finish(tx)
