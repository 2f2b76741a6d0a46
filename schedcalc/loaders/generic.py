# schedcalc/loaders/generic.py

from schedcalc.core.errors import InvalidAmount, InvalidDate, MissingRequiredField, PaymentExcluded
from schedcalc.core.models import UNCATEGORIZED
from schedcalc.loaders.base import BaseLoader
from schedcalc.utils import extract_vendor_name, is_payment_transaction, parse_amount, parse_date


class GenericLoader(BaseLoader):
    """
    Best-effort parser for exports we do not recognise.

    Walks the columns left to right and fills the first unset field from
    any header containing "date", "description"/"vendor" or "amount".
    Cells that do not parse are passed over so a later column can still
    supply the value. Date and vendor are required; amount defaults to 0.
    """

    def parse_row(self, row, header_map, tx):
        for name, idx in sorted(header_map.items(), key=lambda kv: kv[1]):
            if idx >= len(row):
                continue
            value = row[idx].strip()

            if "date" in name and tx.date is None:
                try:
                    tx.date = parse_date(value)
                except InvalidDate:
                    pass

            if ("description" in name or "vendor" in name) and not tx.vendor:
                if is_payment_transaction(value):
                    raise PaymentExcluded(value)
                tx.vendor = extract_vendor_name(value)

            if "amount" in name and tx.amount == 0:
                try:
                    tx.amount = parse_amount(value)
                except InvalidAmount:
                    pass

        if tx.date is None or not tx.vendor:
            raise MissingRequiredField("Missing required fields (date or vendor)")

        tx.category = UNCATEGORIZED
        return self.finish(tx)
