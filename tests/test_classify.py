from datetime import date

import pytest

from schedcalc.classify import (
    BackgroundCategorizer,
    apply_vendor_rules,
    categorize_uncategorized,
    manual_classify,
)
from schedcalc.core.errors import StoreError
from schedcalc.core.models import Classification, CategorizeResult, VendorRule


class FailingUpdateStore:
    """Wraps a store and rejects classification updates for chosen ids."""

    def __init__(self, store, failing_ids):
        self._store = store
        self.failing_ids = set(failing_ids)

    def __getattr__(self, name):
        return getattr(self._store, name)

    def update_classification(self, tx_id, classification):
        if tx_id in self.failing_ids:
            raise StoreError("database is locked")
        self._store.update_classification(tx_id, classification)


def _business_txs(store, make_tx, count):
    txs = [
        make_tx(vendor=f"VENDOR {i:02d}", date=date(2024, 1, i + 1), is_business=True)
        for i in range(count)
    ]
    for tx in txs:
        store.insert_transaction(tx)
    return txs


def test_missing_batch_entry_leaves_transaction_uncategorized(store, make_tx, dummy_classifier, meals):
    txs = _business_txs(store, make_tx, 10)
    skipped = txs[3]
    answers = {tx.vendor: meals for tx in txs if tx is not skipped}
    classifier = dummy_classifier(answers)

    result = categorize_uncategorized(store, classifier)

    assert result == CategorizeResult(total=10, processed=9, missing=1, failed=0)
    assert len(classifier.batches) == 1
    assert classifier.singles == []
    untouched = store.get_transaction(skipped.id)
    assert untouched.category == "uncategorized"
    assert untouched.schedule_c_line == 0
    done = store.get_transaction(txs[0].id)
    assert (done.category, done.schedule_c_line, done.purpose) == ("Meals", 24, "Client lunch")


def test_out_of_range_line_is_stored_as_other_expenses(store, make_tx, dummy_classifier):
    (tx,) = _business_txs(store, make_tx, 1)
    bad = Classification(category="Gifts", schedule_c_line=99, expensable=False)

    categorize_uncategorized(store, dummy_classifier({tx.vendor: bad}))

    stored = store.get_transaction(tx.id)
    assert stored.schedule_c_line == 27
    assert stored.category == "Other business expenses"
    assert stored.expensable is False


def test_batch_failure_falls_back_to_one_request_per_item(store, make_tx, dummy_classifier, meals):
    txs = _business_txs(store, make_tx, 3)
    answers = {txs[0].vendor: meals, txs[2].vendor: meals}
    classifier = dummy_classifier(answers, fail_batch=True)

    result = categorize_uncategorized(store, classifier)

    assert result == CategorizeResult(total=3, processed=2, missing=0, failed=1)
    assert sorted(classifier.singles) == sorted(tx.id for tx in txs)
    assert store.get_transaction(txs[1].id).category == "uncategorized"


def test_store_failure_counts_as_failed(store, make_tx, dummy_classifier, meals):
    txs = _business_txs(store, make_tx, 2)
    wrapped = FailingUpdateStore(store, [txs[0].id])
    classifier = dummy_classifier({tx.vendor: meals for tx in txs})

    result = categorize_uncategorized(wrapped, classifier)

    assert result == CategorizeResult(total=2, processed=1, missing=0, failed=1)
    assert store.get_transaction(txs[0].id).category == "uncategorized"
    assert store.get_transaction(txs[1].id).category == "Meals"


def test_candidates_are_batched_newest_first(store, make_tx, dummy_classifier):
    txs = _business_txs(store, make_tx, 12)
    classifier = dummy_classifier()

    result = categorize_uncategorized(store, classifier, batch_size=10)

    assert [len(b) for b in classifier.batches] == [10, 2]
    assert classifier.batches[0][0] == txs[-1].id
    assert result.missing == 12


def test_only_business_rows_needing_work_are_candidates(store, make_tx, dummy_classifier, meals):
    personal = make_tx(vendor="PERSONAL", is_business=False)
    done = make_tx(vendor="DONE", is_business=True, category="Meals", schedule_c_line=24)
    no_line = make_tx(vendor="NO LINE", is_business=True, category="Supplies", schedule_c_line=0)
    for tx in (personal, done, no_line):
        store.insert_transaction(tx)
    classifier = dummy_classifier({"NO LINE": meals})

    result = categorize_uncategorized(store, classifier)

    assert classifier.batches == [[no_line.id]]
    assert result.processed == 1
    assert store.get_transaction(personal.id).category == "uncategorized"


def test_no_candidates(store, dummy_classifier):
    classifier = dummy_classifier()
    assert categorize_uncategorized(store, classifier) == CategorizeResult()
    assert classifier.batches == []


def test_apply_vendor_rules(store, make_tx):
    coffee = make_tx(vendor="STARBUCKS SEATTLE")
    categorized = make_tx(vendor="STARBUCKS RESERVE", category="Meals", schedule_c_line=24)
    other = make_tx(vendor="HARDWARE STORE")
    for tx in (coffee, categorized, other):
        store.insert_transaction(tx)
    store.upsert_vendor_rule(
        VendorRule(vendor="starbucks", category="Meals", type="expense", expensable=True, schedule_c_line=24)
    )
    store.upsert_vendor_rule(
        VendorRule(vendor="STARBUCKS SEATTLE", category="Office expenses", schedule_c_line=18)
    )

    assert apply_vendor_rules(store) == 1

    updated = store.get_transaction(coffee.id)
    assert (updated.category, updated.schedule_c_line, updated.type) == ("Meals", 24, "expense")
    assert store.get_transaction(other.id).category == "uncategorized"
    assert store.get_transaction(categorized.id).schedule_c_line == 24


def test_apply_vendor_rules_without_rules(store, make_tx):
    store.insert_transaction(make_tx())
    assert apply_vendor_rules(store) == 0


def test_manual_classify_updates_only_given_fields(store, make_tx):
    tx = make_tx(purpose="original", expensable=True)
    store.insert_transaction(tx)

    assert manual_classify(store, tx.id, category="Supplies", schedule_c_line=22)
    stored = store.get_transaction(tx.id)
    assert (stored.category, stored.schedule_c_line) == ("Supplies", 22)
    assert stored.purpose == "original"
    assert stored.expensable is True

    assert manual_classify(store, tx.id, expensable=False)
    assert store.get_transaction(tx.id).expensable is False
    assert manual_classify(store, tx.id, schedule_c_line=0)
    assert store.get_transaction(tx.id).schedule_c_line == 0


@pytest.mark.parametrize("line", [1, 7, 28, 99, -1])
def test_manual_classify_rejects_invalid_lines(store, make_tx, line):
    tx = make_tx()
    store.insert_transaction(tx)
    with pytest.raises(ValueError):
        manual_classify(store, tx.id, schedule_c_line=line)
    assert store.get_transaction(tx.id).schedule_c_line == 0


def test_manual_classify_unknown_id(store):
    assert manual_classify(store, "missing", category="Meals") is False


def test_background_categorizer(store, make_tx, dummy_classifier, meals):
    (tx,) = _business_txs(store, make_tx, 1)
    categorizer = BackgroundCategorizer(store, dummy_classifier({tx.vendor: meals}))
    try:
        result = categorizer.submit().result(timeout=10)
    finally:
        categorizer.shutdown()

    assert result.processed == 1
    assert store.get_transaction(tx.id).category == "Meals"
