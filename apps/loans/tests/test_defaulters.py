# loans/tests/test_defaulters.py

from datetime import date
from decimal import Decimal
from types import SimpleNamespace

from django.test import TestCase, SimpleTestCase

from loans.services import CollectionService, LoanService
from loans.stats import (
    get_loan_defaulter_status,
    get_borrower_defaulter_summary,
    get_defaulters,
    get_recent_defaulters,
)
from loans.tests.factories import create_borrower, create_loan
from loans.utils import (
    calculate_missed_streak,
    calculate_days_overdue,
    is_defaulted,
    is_installment_overdue,
    summarize_overdue,
)

TODAY = date(2025, 6, 1)


def installment(due_date, status='upcoming', amount='1000'):
    return SimpleNamespace(due_date=due_date, status=status, amount=Decimal(amount))


def monthly(statuses, first_due=date(2025, 1, 1)):
    return [
        installment(date(first_due.year, first_due.month + offset, first_due.day), status)
        for offset, status in enumerate(statuses)
    ]


class StreakTest(SimpleTestCase):

    def test_two_consecutive_misses_make_a_defaulter(self):
        installments = monthly(['upcoming', 'due_soon', 'collected', 'upcoming', 'upcoming'])

        self.assertEqual(calculate_missed_streak(installments, TODAY), 2)
        self.assertTrue(is_defaulted(installments, TODAY))

    def test_interleaved_misses_are_not_a_streak(self):
        installments = monthly(['upcoming', 'collected', 'upcoming'])

        self.assertEqual(calculate_missed_streak(installments, TODAY), 1)
        self.assertFalse(is_defaulted(installments, TODAY))

    def test_due_today_or_later_breaks_the_streak(self):
        installments = [
            installment(date(2025, 5, 1)),
            installment(TODAY),
            installment(date(2025, 7, 1)),
        ]

        self.assertFalse(is_installment_overdue(installments[1], TODAY))
        self.assertEqual(calculate_missed_streak(installments, TODAY), 1)

    def test_input_order_does_not_matter(self):
        installments = monthly(['upcoming', 'upcoming', 'collected'])

        self.assertEqual(calculate_missed_streak(list(reversed(installments)), TODAY), 2)

    def test_threshold_is_configurable(self):
        installments = monthly(['upcoming', 'upcoming'])

        self.assertFalse(is_defaulted(installments, TODAY, threshold=3))
        with self.settings(LOANBOOK={'DEFAULTER_STREAK_THRESHOLD': 3}):
            self.assertFalse(is_defaulted(installments, TODAY))

    def test_days_overdue(self):
        self.assertEqual(calculate_days_overdue(date(2025, 5, 1), TODAY), 31)
        self.assertEqual(calculate_days_overdue(TODAY, TODAY), 0)
        self.assertEqual(calculate_days_overdue(date(2025, 7, 1), TODAY), 0)

    def test_summary(self):
        installments = monthly(['upcoming', 'collected', 'due_soon', 'upcoming', 'upcoming'])

        summary = summarize_overdue(installments, TODAY)

        self.assertEqual(summary['max_streak'], 3)
        self.assertEqual(summary['missed_count'], 4)
        self.assertEqual(summary['overdue_amount'], Decimal('4000'))
        self.assertEqual(summary['max_days_overdue'], (TODAY - date(2025, 1, 1)).days)
        self.assertTrue(summary['is_defaulter'])


class LoanDefaulterStatusTest(TestCase):

    def setUp(self):
        # Installments due on the 15th from February; four are past due on TODAY
        self.loan = create_loan(amount='12000', tenure=12, start_date=date(2025, 1, 15))
        self.installments = LoanService.list_installments(self.loan.pk)

    def test_unpaid_loan_is_defaulter(self):
        status = get_loan_defaulter_status(self.loan, TODAY)

        self.assertTrue(status['is_defaulter'])
        self.assertEqual(status['max_streak'], 4)
        self.assertEqual(status['missed_count'], 4)
        self.assertEqual(status['overdue_amount'], Decimal('4000.00'))
        self.assertEqual(status['max_days_overdue'], (TODAY - date(2025, 2, 15)).days)

    def test_alternating_payments_are_not_default(self):
        CollectionService.collect_payment(self.installments[1].pk, paid_amount='1000')
        CollectionService.collect_payment(self.installments[3].pk, paid_amount='1000')

        status = get_loan_defaulter_status(self.loan, TODAY)

        self.assertFalse(status['is_defaulter'])
        self.assertEqual(status['max_streak'], 1)
        self.assertEqual(status['missed_count'], 2)

    def test_partial_payment_still_counts_as_missed(self):
        for inst in self.installments[:2]:
            CollectionService.collect_payment(inst.pk, paid_amount='1000')
        CollectionService.collect_payment(self.installments[2].pk, paid_amount='999')

        status = get_loan_defaulter_status(self.loan, TODAY)

        self.assertEqual(status['max_streak'], 2)
        self.assertTrue(status['is_defaulter'])

    def test_completed_loan_is_never_defaulter(self):
        LoanService.update_loan_status(self.loan.pk, 'completed')
        self.loan.refresh_from_db()

        self.assertFalse(get_loan_defaulter_status(self.loan, TODAY)['is_defaulter'])

    def test_stored_defaulted_status_does_not_decide(self):
        loan = create_loan(amount='12000', tenure=12, start_date=date(2025, 5, 27))
        LoanService.update_loan_status(loan.pk, 'defaulted')
        loan.refresh_from_db()

        status = get_loan_defaulter_status(loan, TODAY)
        self.assertEqual(status['max_streak'], 0)
        self.assertFalse(status['is_defaulter'])

        self.loan.status = 'defaulted'
        self.assertTrue(get_loan_defaulter_status(self.loan, TODAY)['is_defaulter'])

    def test_cancelled_loan_with_misses_is_defaulter(self):
        LoanService.update_loan_status(self.loan.pk, 'cancelled')
        self.loan.refresh_from_db()

        status = get_loan_defaulter_status(self.loan, TODAY)
        self.assertEqual(status['missed_count'], 4)
        self.assertTrue(status['is_defaulter'])

    def test_classification_follows_the_date(self):
        self.assertFalse(get_loan_defaulter_status(self.loan, date(2025, 3, 1))['is_defaulter'])
        self.assertTrue(get_loan_defaulter_status(self.loan, date(2025, 3, 16))['is_defaulter'])


class BorrowerDefaulterTest(TestCase):

    def setUp(self):
        self.borrower = create_borrower(name='Anita Devi')

    def test_summary_aggregates_defaulted_loans(self):
        # Two defaulted loans and one on time
        create_loan(self.borrower, amount='12000', tenure=12, start_date=date(2025, 1, 15))
        create_loan(self.borrower, amount='6000', tenure=6, start_date=date(2025, 2, 20))
        healthy = create_loan(self.borrower, amount='3000', tenure=3, start_date=date(2025, 4, 10))
        CollectionService.collect_payment(LoanService.list_installments(healthy.pk)[0].pk, paid_amount='1000')

        summary = get_borrower_defaulter_summary(self.borrower, TODAY)

        self.assertTrue(summary['is_defaulter'])
        self.assertEqual(summary['defaulted_loans'], 2)
        # 4 missed on the first loan, 3 on the second (Mar 20, Apr 20, May 20)
        self.assertEqual(summary['consecutive_missed'], 7)
        self.assertEqual(summary['total_outstanding'], Decimal('7000.00'))
        self.assertEqual(summary['max_days_overdue'], (TODAY - date(2025, 2, 15)).days)

    def test_borrower_with_completed_loans_only_is_not_defaulter(self):
        loan = create_loan(self.borrower, amount='12000', tenure=12, start_date=date(2025, 1, 15))
        LoanService.update_loan_status(loan.pk, 'completed')

        self.assertFalse(get_borrower_defaulter_summary(self.borrower, TODAY)['is_defaulter'])

    def test_cancelled_loan_counts_toward_borrower_default(self):
        loan = create_loan(self.borrower, amount='12000', tenure=12, start_date=date(2025, 1, 15))
        LoanService.update_loan_status(loan.pk, 'cancelled')

        summary = get_borrower_defaulter_summary(self.borrower, TODAY)

        self.assertTrue(summary['is_defaulter'])
        self.assertEqual(summary['defaulted_loans'], 1)
        self.assertEqual(summary['consecutive_missed'], 4)


class DefaulterListsTest(TestCase):

    def setUp(self):
        self.heavy = create_borrower(name='Heavy', phone='1111111111')
        self.light = create_borrower(name='Light', phone='2222222222', guarantor_name='G Light')
        self.fine = create_borrower(name='Fine', phone='3333333333')

        create_loan(self.heavy, amount='12000', tenure=12, start_date=date(2025, 1, 15))
        create_loan(self.heavy, amount='12000', tenure=12, start_date=date(2025, 2, 15))
        self.light_loan = create_loan(self.light, amount='6000', tenure=6, start_date=date(2025, 2, 20))
        create_loan(self.fine, amount='6000', tenure=6, start_date=date(2025, 5, 1))

    def test_recent_defaulters_ranked(self):
        rows = get_recent_defaulters(today=TODAY)

        self.assertEqual([row['name'] for row in rows], ['Heavy', 'Light'])
        self.assertEqual(rows[0]['defaulted_loans'], 2)

    def test_recent_defaulters_limit(self):
        rows = get_recent_defaulters(limit=1, today=TODAY)

        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]['name'], 'Heavy')

    def test_get_defaulters_rows(self):
        rows = get_defaulters(TODAY)

        self.assertEqual(len(rows), 3)
        self.assertEqual(rows[0]['borrower_name'], 'Heavy')
        self.assertEqual(rows[0]['max_days_overdue'], (TODAY - date(2025, 2, 15)).days)

        light = next(row for row in rows if row['loan_id'] == self.light_loan.pk)
        self.assertEqual(light['guarantor_name'], 'G Light')
        self.assertEqual(light['missed_count'], 3)

    def test_loan_guarantor_takes_precedence(self):
        LoanService.update_loan(self.light_loan.pk, guarantor_name='Loan Guarantor')

        light = next(row for row in get_defaulters(TODAY) if row['loan_id'] == self.light_loan.pk)
        self.assertEqual(light['guarantor_name'], 'Loan Guarantor')

    def test_cancelled_loans_still_classified(self):
        LoanService.update_loan_status(self.light_loan.pk, 'cancelled')

        names = {row['borrower_name'] for row in get_defaulters(TODAY)}
        self.assertEqual(names, {'Heavy', 'Light'})

        light = next(row for row in get_recent_defaulters(today=TODAY) if row['name'] == 'Light')
        self.assertEqual(light['defaulted_loans'], 1)

    def test_completed_loans_excluded(self):
        LoanService.update_loan_status(self.light_loan.pk, 'completed')

        names = {row['borrower_name'] for row in get_defaulters(TODAY)}
        self.assertEqual(names, {'Heavy'})
