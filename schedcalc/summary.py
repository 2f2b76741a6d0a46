"""Schedule C totals and transaction overviews."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, Iterable, List

import pandas as pd

from schedcalc.core.categories import SCHEDULE_C_LINE_KEYS
from schedcalc.core.models import Transaction
from schedcalc.deductions import DeductionSettings, saved_deductions

logger = logging.getLogger(__name__)

GROSS_RECEIPTS_KEY = "line1_gross_receipts"
HOME_OFFICE_KEY = "line30_home_office"
TOTAL_EXPENSES_KEY = "line28_total_expenses"
NET_PROFIT_KEY = "line31_net_profit_loss"


def _empty_lines() -> Dict[str, float]:
    return {key: 0.0 for key in SCHEDULE_C_LINE_KEYS.values()}


def _fill_lines(schedule_c: Dict[str, float], totals: Dict[int, float]) -> float:
    total = 0.0
    for line, amount in totals.items():
        key = SCHEDULE_C_LINE_KEYS.get(line)
        if key is None:
            continue
        schedule_c[key] = amount
        total += amount
    return total


def schedule_c_summary(store, config: Dict[str, object] | None = None) -> Dict[str, object]:
    """Build the Schedule C view over every expensable transaction.

    Gross receipts come from expensable income rows, expense lines from
    expensable expense rows with an assigned line. The saved vehicle
    deduction is folded into line 9 and the home office deduction fills
    line 30.
    """
    config = config or {}
    settings = DeductionSettings.from_config(config)

    gross_receipts = store.sum_income()
    schedule_c: Dict[str, float] = {GROSS_RECEIPTS_KEY: gross_receipts, **_empty_lines()}
    total_expenses = _fill_lines(schedule_c, store.expense_totals_by_line())

    deductions = saved_deductions(store, settings)
    schedule_c[SCHEDULE_C_LINE_KEYS[9]] += deductions["vehicle_deduction"]
    schedule_c[HOME_OFFICE_KEY] = deductions["home_office_deduction"]
    total_expenses += deductions["vehicle_deduction"] + deductions["home_office_deduction"]

    net = gross_receipts - total_expenses
    schedule_c[TOTAL_EXPENSES_KEY] = total_expenses
    schedule_c[NET_PROFIT_KEY] = net

    counts = store.transaction_counts()
    logger.info(
        "Schedule C Summary: Gross Receipts $%.2f - Total Expenses $%.2f = Net Profit/Loss $%.2f",
        gross_receipts, total_expenses, net,
    )
    return {
        "schedule_c": schedule_c,
        "summary": {
            "gross_receipts": gross_receipts,
            "total_expenses": total_expenses,
            "net_profit_loss": net,
            "income_transactions": counts["income_transactions"],
            "expense_transactions": counts["expense_transactions"],
            "uncategorized_transactions": counts["uncategorized_transactions"],
            "vehicle_miles": deductions["business_miles"],
            "home_office_sqft": deductions["home_office_sqft"],
        },
        "tax_year": config.get("tax_year", 2024),
        "calculation_date": datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
    }


def business_summary(store, config: Dict[str, object] | None = None) -> Dict[str, object]:
    """Like ``schedule_c_summary`` but over rows flagged as business, without deductions."""
    config = config or {}
    income = store.sum_income(business_only=True)
    schedule_c = {**_empty_lines(), HOME_OFFICE_KEY: 0.0}
    expenses = _fill_lines(schedule_c, store.expense_totals_by_line(business_only=True))
    net = income - expenses

    counts = store.transaction_counts()
    logger.info(
        "Business Summary: Income $%.2f - Expenses $%.2f = Net Profit/Loss $%.2f",
        income, expenses, net,
    )
    return {
        "schedule_c": schedule_c,
        "summary": {
            "business_income": income,
            "business_expenses": expenses,
            "net_profit_loss": net,
            "business_income_transactions": counts["business_income_transactions"],
            "business_expense_transactions": counts["business_expense_transactions"],
            "personal_transactions": counts["personal_transactions"],
        },
        "tax_year": config.get("tax_year", 2024),
        "calculation_date": datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
    }


def transactions_frame(transactions: Iterable[Transaction]) -> pd.DataFrame:
    rows = [
        {
            "id": tx.id,
            "date": tx.date,
            "vendor": tx.vendor,
            "amount": tx.amount,
            "card": tx.card,
            "category": tx.category,
            "type": tx.type,
            "line": tx.schedule_c_line,
            "business": tx.is_business,
        }
        for tx in transactions
    ]
    columns = ["id", "date", "vendor", "amount", "card", "category", "type", "line", "business"]
    return pd.DataFrame(rows, columns=columns)


def summarize_transactions(transactions: Iterable[Transaction]) -> Dict[str, object]:
    """Totals and vendor stats for a list of transactions.

    Only positive amounts count toward the income and expense totals, so
    refunds and credits on either side are left out.
    """
    df = transactions_frame(transactions)
    positive = df[df["amount"] > 0]
    income = float(positive.loc[positive["type"] == "income", "amount"].sum())
    expenses = float(positive.loc[positive["type"] == "expense", "amount"].sum())

    vendor_counts = df["vendor"].value_counts()
    recurring: List[str] = sorted(vendor_counts[vendor_counts > 1].index.tolist())

    return {
        "total_transactions": int(len(df)),
        "total_income": income,
        "total_expenses": expenses,
        "net": income - expenses,
        "recurring_vendors": recurring,
        "unique_vendors": int(df["vendor"].nunique()),
    }
