# loans/tests/factories.py

from datetime import date
from decimal import Decimal

from borrowers.models import Borrower
from loans.services import LoanService


def create_borrower(**kwargs):
    defaults = {
        'name': 'Ravi Kumar',
        'phone': '9876543210',
        'address': '12 Market Road',
        'guarantor_name': 'Suresh Kumar',
        'guarantor_phone': '9123456780',
    }
    defaults.update(kwargs)
    return Borrower.objects.create(**defaults)


def create_loan(borrower=None, **kwargs):
    defaults = {
        'amount': Decimal('12000'),
        'loan_strategy': 'emi',
        'start_date': date(2025, 1, 15),
        'tenure': 12,
    }
    defaults.update(kwargs)
    return LoanService.create_loan(borrower or create_borrower(), **defaults)
