# schedcalc/core/categorizer.py
from schedcalc.core.models import UNCATEGORIZED


def is_uncategorized(tx):
    return tx.category in (UNCATEGORIZED, "", None)


def match_vendor_rule(tx, rules):
    """Return the first rule whose vendor string occurs in the transaction's vendor."""
    name = tx.vendor.lower()
    for rule in rules:
        if rule.vendor and rule.vendor.lower() in name:
            return rule
    return None
