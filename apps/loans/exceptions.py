# loans/exceptions.py

"""
Errors raised by the loan services.

Malformed input is reported with django.core.exceptions.ValidationError;
the classes here cover missing records and ledger cap violations.
"""


class LoanServiceError(Exception):
    """Base class for loan service failures"""


class NotFound(LoanServiceError):
    """Referenced loan, installment or transaction does not exist"""

    def __init__(self, model, pk):
        self.model = model
        self.pk = pk
        super().__init__(f"{model} {pk} not found")


class InvalidAmount(LoanServiceError):
    """
    A collection or transaction edit would push the total paid on an
    installment past its scheduled amount.
    """

    def __init__(self, scheduled_amount, previous_paid, new_amount):
        self.scheduled_amount = scheduled_amount
        self.previous_paid = previous_paid
        self.new_amount = new_amount
        self.total = previous_paid + new_amount
        super().__init__(
            f"Payment amount cannot exceed EMI amount. "
            f"EMI: {scheduled_amount}, Already paid: {previous_paid}, "
            f"New payment: {new_amount}, Total would be: {self.total}"
        )
