import uuid
from datetime import date

import pytest

from schedcalc.core.errors import ClassifierUnavailable
from schedcalc.core.models import Classification, Transaction
from schedcalc.database import SQLiteStore


@pytest.fixture
def store(tmp_path):
    return SQLiteStore(str(tmp_path / "schedcalc.db"))


@pytest.fixture
def make_tx():
    def _make(**overrides):
        fields = {
            "id": str(uuid.uuid4()),
            "date": date(2024, 3, 1),
            "vendor": "COFFEE SHOP",
            "amount": 4.5,
            "card": "chase card",
            "type": "expense",
            "expensable": True,
        }
        fields.update(overrides)
        return Transaction(**fields)
    return _make


class DummyClassifier:
    """Classifier double: answers from a fixed mapping of vendor -> Classification.

    Vendors missing from ``answers`` are left out of batch replies and fail
    single requests.
    """

    def __init__(self, answers=None, fail_batch=False):
        self.answers = answers or {}
        self.fail_batch = fail_batch
        self.batches = []
        self.singles = []

    def classify_batch(self, transactions):
        self.batches.append([tx.id for tx in transactions])
        if self.fail_batch:
            raise ClassifierUnavailable("LLM API error 503: unavailable")
        return {
            tx.id: self.answers[tx.vendor]
            for tx in transactions
            if tx.vendor in self.answers
        }

    def classify(self, tx):
        self.singles.append(tx.id)
        if tx.vendor not in self.answers:
            raise ClassifierUnavailable(f"no answer for {tx.vendor}")
        return self.answers[tx.vendor]


@pytest.fixture
def dummy_classifier():
    return DummyClassifier


@pytest.fixture
def meals():
    return Classification(category="Meals", schedule_c_line=24, expensable=True, purpose="Client lunch")
