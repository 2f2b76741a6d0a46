# schedcalc/core/categories.py
"""IRS Schedule C expense categories and classification validation."""

import logging
from dataclasses import replace
from typing import Dict, List, NamedTuple

from schedcalc.core.models import Classification

logger = logging.getLogger(__name__)

MIN_EXPENSE_LINE = 8
MAX_EXPENSE_LINE = 27
OTHER_LINE = 27
OTHER_CATEGORY = "Other business expenses"


class ScheduleCCategory(NamedTuple):
    name: str
    line_number: int
    description: str


SCHEDULE_C_CATEGORIES: List[ScheduleCCategory] = [
    ScheduleCCategory("Advertising", 8, "Advertising and marketing expenses"),
    ScheduleCCategory("Car and truck", 9, "Vehicle expenses for business use"),
    ScheduleCCategory("Commissions and fees", 10, "Commissions and fees paid"),
    ScheduleCCategory("Contractors", 11, "Contract labor and contractor expenses"),
    ScheduleCCategory("Insurance", 15, "Business insurance expenses"),
    ScheduleCCategory("Interest paid", 16, "Business interest payments"),
    ScheduleCCategory("Legal fees and professional services", 17, "Legal and professional services"),
    ScheduleCCategory("Meals", 24, "Business meals and entertainment"),
    ScheduleCCategory("Office expenses", 18, "Office supplies and expenses"),
    ScheduleCCategory(OTHER_CATEGORY, OTHER_LINE, "Other miscellaneous business expenses"),
    ScheduleCCategory("Rent and lease", 20, "Rent or lease of business property and equipment"),
    ScheduleCCategory("Repairs and maintenance", 21, "Repairs and maintenance expenses"),
    ScheduleCCategory("Supplies", 22, "Business supplies and materials"),
    ScheduleCCategory("Taxes and licenses", 23, "Business taxes and licenses"),
    ScheduleCCategory("Travel expenses", 25, "Business travel expenses"),
    ScheduleCCategory("Utilities", 26, "Business utilities and communications"),
]

# Form labels for the expense lines, keyed by line number.
SCHEDULE_C_LINE_KEYS: Dict[int, str] = {
    8: "line8_advertising",
    9: "line9_car_truck",
    10: "line10_commissions_fees",
    11: "line11_contract_labor",
    12: "line12_depletion",
    13: "line13_depreciation",
    14: "line14_employee_benefits",
    15: "line15_insurance",
    16: "line16_interest",
    17: "line17_legal_professional",
    18: "line18_office_expense",
    19: "line19_pension_profit",
    20: "line20_rent_lease",
    21: "line21_repairs_maintenance",
    22: "line22_supplies",
    23: "line23_taxes_licenses",
    24: "line24_travel_meals",
    25: "line25_utilities",
    26: "line26_wages",
    27: "line27_other_expenses",
}


def is_expense_line(line: int) -> bool:
    return MIN_EXPENSE_LINE <= line <= MAX_EXPENSE_LINE


def validate_classification(classification: Classification, label: str = "") -> Classification:
    """Coerce an out-of-range line to "Other business expenses".

    ``expensable`` is left as returned: the classifier may park
    non-business items on line 27 with ``expensable`` false.
    """
    if is_expense_line(classification.schedule_c_line):
        return classification
    logger.warning(
        "Invalid schedule_c_line %s for %s, converting to Line %d (%s)",
        classification.schedule_c_line, label or classification.category,
        OTHER_LINE, OTHER_CATEGORY,
    )
    return replace(classification, schedule_c_line=OTHER_LINE, category=OTHER_CATEGORY)


def categories_prompt_block() -> str:
    """Return the "Line N: name" list embedded in classifier prompts."""
    ordered = sorted(SCHEDULE_C_CATEGORIES, key=lambda c: c.line_number)
    return "\n".join(f'- Line {c.line_number}: "{c.name}"' for c in ordered)
