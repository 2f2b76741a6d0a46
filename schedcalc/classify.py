"""Resolve categories and Schedule C lines for stored transactions.

Three sources feed a transaction's classification, strongest first:

- ``manual_classify``: an explicit user edit, written straight to the store.
- ``apply_vendor_rules``: user-defined vendor defaults, only for rows that
  are still uncategorized.
- ``categorize_uncategorized``: the LLM classifier, for business rows that
  still lack a category or a Schedule C line.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Dict, List, Protocol, Sequence

from schedcalc.core.categories import is_expense_line, validate_classification
from schedcalc.core.categorizer import is_uncategorized, match_vendor_rule
from schedcalc.core.errors import ClassifierError, StoreError
from schedcalc.core.models import CategorizeResult, Classification, Transaction
from schedcalc.database import TransactionStore

logger = logging.getLogger(__name__)

BATCH_SIZE = 10


class Classifier(Protocol):
    def classify_batch(self, transactions: Sequence[Transaction]) -> Dict[str, Classification]: ...

    def classify(self, tx: Transaction) -> Classification: ...


def manual_classify(
    store: TransactionStore,
    tx_id: str,
    *,
    category: str | None = None,
    purpose: str | None = None,
    expensable: bool | None = None,
    schedule_c_line: int | None = None,
) -> bool:
    """Apply a user edit; fields left as ``None`` keep their stored value."""
    if schedule_c_line is not None and schedule_c_line != 0 and not is_expense_line(schedule_c_line):
        raise ValueError(f"schedule_c_line must be 0 or between 8 and 27, got {schedule_c_line}")
    updated = store.update_manual(
        tx_id,
        category=category,
        purpose=purpose,
        expensable=expensable,
        schedule_c_line=schedule_c_line,
    )
    if updated:
        logger.info("Manual classification: transaction %s updated", tx_id)
    return updated


def apply_vendor_rules(store: TransactionStore) -> int:
    """Apply vendor rules to uncategorized transactions; returns rows updated."""
    rules = store.list_vendor_rules()
    if not rules:
        logger.info("No vendor rules found")
        return 0

    applied = 0
    for tx in store.fetch_uncategorized():
        if not is_uncategorized(tx):
            continue
        rule = match_vendor_rule(tx, rules)
        if rule is None:
            continue
        store.apply_rule_to_transaction(tx.id, rule)
        applied += 1
        logger.debug("Applied rule %r -> %s to %s", rule.vendor, rule.category, tx.id)

    logger.info("Applied vendor rules to %d transactions", applied)
    return applied


def _store_classification(store, tx: Transaction, classification: Classification) -> bool:
    classification = validate_classification(classification, tx.vendor)
    try:
        store.update_classification(tx.id, classification)
    except StoreError as e:
        logger.error("Failed to update transaction %s: %s", tx.id, e)
        return False
    logger.info(
        "Classified: %s -> %s (Line %d)",
        tx.vendor, classification.category, classification.schedule_c_line,
    )
    return True


def _classify_individually(store, classifier: Classifier, batch: List[Transaction], result: CategorizeResult) -> None:
    for tx in batch:
        try:
            classification = classifier.classify(tx)
        except ClassifierError as e:
            logger.error("Failed to classify transaction %s: %s", tx.id, e)
            result.failed += 1
            continue
        if _store_classification(store, tx, classification):
            result.processed += 1
        else:
            result.failed += 1


def categorize_uncategorized(
    store: TransactionStore,
    classifier: Classifier,
    batch_size: int = BATCH_SIZE,
) -> CategorizeResult:
    """Classify business transactions that still need a category or line.

    Candidates go to the classifier ``batch_size`` at a time. If a batch
    request fails, each transaction in it gets exactly one individual request;
    a transaction the batch reply leaves out stays as it is.
    """
    candidates = store.fetch_classification_candidates()
    result = CategorizeResult(total=len(candidates))
    if not candidates:
        logger.info("No uncategorized transactions found")
        return result

    for start in range(0, len(candidates), batch_size):
        batch = candidates[start:start + batch_size]
        logger.info(
            "Processing batch %d-%d of %d transactions...",
            start + 1, start + len(batch), len(candidates),
        )
        try:
            classifications = classifier.classify_batch(batch)
        except ClassifierError as e:
            logger.warning("Failed to classify batch: %s; falling back to single requests", e)
            _classify_individually(store, classifier, batch, result)
            continue

        for tx in batch:
            classification = classifications.get(tx.id)
            if classification is None:
                logger.warning("No classification found for transaction %s", tx.id)
                result.missing += 1
                continue
            if _store_classification(store, tx, classification):
                result.processed += 1
            else:
                result.failed += 1

    logger.info(
        "Auto-categorization completed: %d/%d transactions processed",
        result.processed, result.total,
    )
    return result


class BackgroundCategorizer:
    """Run ``categorize_uncategorized`` off the caller's thread.

    Jobs are fire-and-forget: the outcome, success or failure, only goes to
    the log. ``submit`` hands back the future so tests and the CLI can wait.
    """

    def __init__(self, store: TransactionStore, classifier: Classifier, batch_size: int = BATCH_SIZE) -> None:
        self.store = store
        self.classifier = classifier
        self.batch_size = batch_size
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="categorize")

    def submit(self) -> Future:
        logger.info("Starting auto-categorization for uploaded transactions...")
        future = self._executor.submit(
            categorize_uncategorized, self.store, self.classifier, self.batch_size
        )
        future.add_done_callback(self._log_outcome)
        return future

    @staticmethod
    def _log_outcome(future: Future) -> None:
        exc = future.exception()
        if exc is not None:
            logger.error("Auto-categorization failed: %s", exc)
        else:
            logger.info("Auto-categorization completed: %s", future.result())

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
