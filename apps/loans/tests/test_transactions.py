# loans/tests/test_transactions.py

import uuid
from datetime import date
from decimal import Decimal
from unittest import mock

from django.core.exceptions import ValidationError
from django.db.models import Sum
from django.test import TestCase

from loans import services
from loans.exceptions import InvalidAmount, NotFound
from loans.models import Installment, PaymentTransaction
from loans.services import CollectionService, LoanService
from loans.tests.factories import create_loan


def transactions_total(installment):
    return installment.transactions.aggregate(total=Sum('amount'))['total'] or Decimal('0.00')


class UpdateTransactionTest(TestCase):

    def setUp(self):
        self.loan = create_loan(amount='12000', tenure=12)
        self.installment = LoanService.list_installments(self.loan.pk)[0]
        CollectionService.collect_payment(self.installment.pk, paid_amount='400', paid_date=date(2025, 2, 1),
                                          payment_method='cash')
        CollectionService.collect_payment(self.installment.pk, paid_amount='300', paid_date=date(2025, 2, 5),
                                          payment_method='upi')
        self.first, self.latest = sorted(self.installment.transactions.all(), key=lambda t: t.paid_date)

    def test_edit_recomputes_installment(self):
        CollectionService.update_transaction(self.first.pk, amount='700')

        self.installment.refresh_from_db()
        self.assertEqual(self.installment.paid_amount, Decimal('1000.00'))
        self.assertEqual(self.installment.due_amount, Decimal('0.00'))
        self.assertEqual(self.installment.status, 'collected')

    def test_edit_down_to_partial(self):
        CollectionService.update_transaction(self.first.pk, amount='100')

        self.installment.refresh_from_db()
        self.assertEqual(self.installment.paid_amount, Decimal('400.00'))
        self.assertEqual(self.installment.due_amount, Decimal('600.00'))
        self.assertEqual(self.installment.status, 'due_soon')

    def test_edit_past_scheduled_amount_fails(self):
        with self.assertRaises(InvalidAmount) as ctx:
            CollectionService.update_transaction(self.first.pk, amount='701')

        self.assertEqual(ctx.exception.previous_paid, Decimal('300.00'))
        self.assertEqual(ctx.exception.new_amount, Decimal('701.00'))

        self.first.refresh_from_db()
        self.installment.refresh_from_db()
        self.assertEqual(self.first.amount, Decimal('400.00'))
        self.assertEqual(self.installment.paid_amount, Decimal('700.00'))

    def test_edit_metadata_updates_last_payment_details(self):
        CollectionService.update_transaction(self.first.pk, paid_date=date(2025, 2, 20),
                                             payment_method='bank_transfer', notes='moved')

        self.first.refresh_from_db()
        self.installment.refresh_from_db()
        self.assertEqual(self.first.notes, 'moved')
        self.assertEqual(self.first.amount, Decimal('400.00'))
        self.assertEqual(self.installment.paid_date, date(2025, 2, 20))
        self.assertEqual(self.installment.payment_method, 'bank_transfer')

    def test_edit_rejects_non_positive_amount(self):
        with self.assertRaises(ValidationError):
            CollectionService.update_transaction(self.first.pk, amount='0')

    def test_edit_missing_transaction(self):
        with self.assertRaises(NotFound):
            CollectionService.update_transaction(uuid.uuid4(), amount='10')

    def test_edit_cap_applies_to_flat_loans(self):
        loan = create_loan(loan_strategy='flat', amount='10000', tenure=None)
        installment = loan.installments.get()
        CollectionService.collect_payment(installment.pk, paid_amount='400')
        transaction = installment.transactions.get()

        with self.assertRaises(InvalidAmount):
            CollectionService.update_transaction(transaction.pk, amount='1200')

    def test_edit_reopens_completed_loan(self):
        loan = create_loan(amount='1000', tenure=1)
        installment = loan.installments.get()
        CollectionService.collect_payment(installment.pk, paid_amount='1000')
        loan.refresh_from_db()
        self.assertEqual(loan.status, 'completed')

        CollectionService.update_transaction(installment.transactions.get().pk, amount='900')

        loan.refresh_from_db()
        self.assertEqual(loan.status, 'active')


class DeleteTransactionTest(TestCase):

    def setUp(self):
        loan = create_loan(amount='12000', tenure=12)
        self.installment = LoanService.list_installments(loan.pk)[0]

    def test_delete_only_transaction_restores_upcoming(self):
        CollectionService.collect_payment(self.installment.pk, paid_amount='500', payment_method='cash')
        transaction = self.installment.transactions.get()

        installment = CollectionService.delete_transaction(transaction.pk)

        self.assertEqual(installment.status, 'upcoming')
        self.assertEqual(installment.paid_amount, Decimal('0.00'))
        self.assertEqual(installment.due_amount, Decimal('1000.00'))
        self.assertIsNone(installment.paid_date)
        self.assertIsNone(installment.payment_method)

    def test_delete_one_of_two(self):
        CollectionService.collect_payment(self.installment.pk, paid_amount='500', paid_date=date(2025, 2, 1))
        CollectionService.collect_payment(self.installment.pk, paid_amount='500', paid_date=date(2025, 2, 9))
        latest = CollectionService.list_transactions(self.installment.pk)[0]

        installment = CollectionService.delete_transaction(latest.pk)

        self.assertEqual(installment.status, 'due_soon')
        self.assertEqual(installment.paid_amount, Decimal('500.00'))
        self.assertEqual(installment.paid_date, date(2025, 2, 1))

    def test_delete_missing_transaction(self):
        with self.assertRaises(NotFound):
            CollectionService.delete_transaction(uuid.uuid4())


class LockOrderTest(TestCase):
    """Edits, deletes and resets take the installment row lock first"""

    def setUp(self):
        loan = create_loan(amount='12000', tenure=12)
        self.installment = LoanService.list_installments(loan.pk)[0]
        CollectionService.collect_payment(self.installment.pk, paid_amount='400')
        self.payment = self.installment.transactions.get()

    def locked_models(self, operation, *args, **kwargs):
        with mock.patch.object(services, '_get_object', wraps=services._get_object) as get_object:
            operation(*args, **kwargs)
        return [
            call.args[0].model for call in get_object.call_args_list
            if call.args[0].query.select_for_update
        ]

    def test_update_locks_installment_then_transaction(self):
        locked = self.locked_models(CollectionService.update_transaction, self.payment.pk, amount='500')

        self.assertEqual(locked[:2], [Installment, PaymentTransaction])

    def test_delete_locks_installment_then_transaction(self):
        locked = self.locked_models(CollectionService.delete_transaction, self.payment.pk)

        self.assertEqual(locked[:2], [Installment, PaymentTransaction])

    def test_reset_locks_installment_first(self):
        locked = self.locked_models(CollectionService.reset_payment, self.installment.pk)

        self.assertEqual(locked[0], Installment)
        self.assertNotIn(PaymentTransaction, locked)

    def test_transaction_moved_off_installment_is_not_found(self):
        other = LoanService.list_installments(self.installment.loan_id)[1]
        lock_installment = CollectionService._lock_installment

        def move_then_lock(installment_id):
            PaymentTransaction.objects.filter(pk=self.payment.pk).update(installment=other)
            return lock_installment(installment_id)

        with mock.patch.object(CollectionService, '_lock_installment', side_effect=move_then_lock):
            with self.assertRaises(NotFound):
                CollectionService.update_transaction(self.payment.pk, amount='500')


class LedgerConsistencyTest(TestCase):
    """Transactions always add up to the installment's paid amount"""

    def test_totals_match_after_mixed_operations(self):
        loan = create_loan(amount='12000', tenure=12)
        installment = LoanService.list_installments(loan.pk)[0]

        def check():
            installment.refresh_from_db()
            self.assertEqual(transactions_total(installment), installment.paid_amount)

        CollectionService.collect_payment(installment.pk, paid_amount='200')
        check()
        CollectionService.collect_payment(installment.pk, paid_amount='300')
        check()
        with self.assertRaises(InvalidAmount):
            CollectionService.collect_payment(installment.pk, paid_amount='600')
        check()
        first = installment.transactions.order_by('created_at').first()
        CollectionService.update_transaction(first.pk, amount='650')
        check()
        with self.assertRaises(InvalidAmount):
            CollectionService.update_transaction(first.pk, amount='750')
        check()
        CollectionService.collect_payment(installment.pk, notes='checked')
        check()
        CollectionService.reset_payment(installment.pk)
        check()
        CollectionService.collect_payment(installment.pk, status='collected')
        check()
        self.assertEqual(installment.paid_amount, installment.amount)
