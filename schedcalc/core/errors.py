# schedcalc/core/errors.py


class SchedCalcError(Exception):
    """Base class for every error raised by schedcalc."""


class RowError(SchedCalcError, ValueError):
    """A single CSV row could not be turned into a transaction."""


class InvalidDate(RowError):
    pass


class InvalidAmount(RowError):
    pass


class MissingRequiredField(RowError):
    pass


class PaymentExcluded(SchedCalcError):
    """Raised by a parser when the row is an internal payment or transfer.

    Not a failure: the pipeline counts these rows and drops them.
    """

    def __init__(self, description: str):
        super().__init__(f"Payment/transfer excluded: {description}")
        self.description = description


class EmptyFile(SchedCalcError, ValueError):
    pass


class InvalidUpload(SchedCalcError, ValueError):
    pass


class ClassifierError(SchedCalcError, RuntimeError):
    pass


class ClassifierUnavailable(ClassifierError):
    """The classifier could not be reached or returned a non-200 reply."""


class ClassifierMalformedResponse(ClassifierError):
    """The classifier replied, but the reply could not be parsed."""


class StoreError(SchedCalcError, RuntimeError):
    """The transaction store rejected or failed a read or write."""
