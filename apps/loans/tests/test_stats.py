# loans/tests/test_stats.py

from datetime import date
from decimal import Decimal

from django.test import TestCase

from loans.services import CollectionService, InstallmentService, LoanService
from loans.stats import (
    get_dashboard_stats,
    get_loan_display_status,
    get_missed_installments,
    get_next_installment,
    get_recent_loans,
    get_upcoming_installments,
)
from loans.tests.factories import create_borrower, create_loan

TODAY = date(2025, 6, 1)


class DisplayStatusTest(TestCase):

    def test_labels(self):
        defaulter = create_loan(start_date=date(2025, 1, 15))
        overdue = create_loan(start_date=date(2025, 4, 15))
        active = create_loan(start_date=date(2025, 5, 20))
        completed = create_loan(start_date=date(2025, 1, 15))
        LoanService.update_loan_status(completed.pk, 'completed')
        completed.refresh_from_db()

        self.assertEqual(get_loan_display_status(defaulter, TODAY), 'Defaulter')
        self.assertEqual(get_loan_display_status(overdue, TODAY), 'Overdue')
        self.assertEqual(get_loan_display_status(active, TODAY), 'Active')
        self.assertEqual(get_loan_display_status(completed, TODAY), 'Completed')


class NextInstallmentTest(TestCase):

    def test_next_uncollected_due_today_or_later(self):
        loan = create_loan(start_date=date(2025, 5, 1))
        installments = LoanService.list_installments(loan.pk)

        self.assertEqual(get_next_installment(loan, TODAY), installments[0])

        CollectionService.collect_payment(installments[0].pk, paid_amount='1000')
        self.assertEqual(get_next_installment(loan, TODAY), installments[1])

    def test_none_when_nothing_pending(self):
        loan = create_loan(loan_strategy='custom', tenure=None)

        self.assertIsNone(get_next_installment(loan, TODAY))


class RecentLoansTest(TestCase):

    def test_newest_first_with_limit(self):
        borrower = create_borrower(name='Meena')
        for month in (1, 2, 3, 4, 5):
            create_loan(borrower, start_date=date(2025, month, 10))

        rows = get_recent_loans(limit=3, today=TODAY)

        self.assertEqual(len(rows), 3)
        self.assertEqual(rows[0]['start_date'], date(2025, 5, 10))
        self.assertEqual(rows[0]['borrower_name'], 'Meena')
        self.assertEqual(rows[0]['next_due_date'], date(2025, 6, 10))
        self.assertEqual(rows[0]['display_status'], 'Active')

    def test_default_limit(self):
        for month in (1, 2, 3, 4, 5):
            create_loan(start_date=date(2025, month, 10))

        self.assertEqual(len(get_recent_loans(today=TODAY)), 4)


class InstallmentListsTest(TestCase):

    def setUp(self):
        # Due Feb 15 .. Jan 15; Feb-May are overdue on TODAY
        self.loan = create_loan(start_date=date(2025, 1, 15))
        self.installments = LoanService.list_installments(self.loan.pk)

    def test_upcoming_window(self):
        upcoming = get_upcoming_installments(TODAY)

        self.assertEqual([inst.due_date for inst in upcoming], [date(2025, 6, 15)])

    def test_upcoming_includes_partially_paid(self):
        CollectionService.collect_payment(self.installments[4].pk, paid_amount='100')

        upcoming = get_upcoming_installments(TODAY)
        self.assertEqual(upcoming[0].status, 'due_soon')

    def test_upcoming_excludes_collected_and_settled_loans(self):
        CollectionService.collect_payment(self.installments[4].pk, paid_amount='1000')
        self.assertEqual(get_upcoming_installments(TODAY), [])

        other = create_loan(start_date=date(2025, 5, 20))
        LoanService.update_loan_status(other.pk, 'cancelled')
        self.assertEqual(get_upcoming_installments(TODAY), [])

    def test_missed_installments(self):
        CollectionService.collect_payment(self.installments[1].pk, paid_amount='1000')

        rows = get_missed_installments(TODAY)

        self.assertEqual(
            [row['due_date'] for row in rows],
            [date(2025, 2, 15), date(2025, 4, 15), date(2025, 5, 15)]
        )
        self.assertEqual(rows[0]['days_overdue'], (TODAY - date(2025, 2, 15)).days)
        self.assertEqual(rows[0]['guarantor_name'], 'Suresh Kumar')

    def test_dashboard(self):
        create_loan(loan_strategy='flat', amount='10000', tenure=None, start_date=date(2025, 5, 1))
        CollectionService.collect_payment(self.installments[0].pk, paid_amount='1000')
        InstallmentService.add_custom_installment(self.loan.pk, '500', date(2025, 5, 25))

        stats = get_dashboard_stats(TODAY)

        self.assertEqual(stats['total_loans'], 2)
        self.assertEqual(stats['active_loans'], 2)
        self.assertEqual(stats['completed_loans'], 0)
        # Mar, Apr, May of the EMI loan plus the added May 25 installment
        self.assertEqual(stats['overdue_installments'], 4)
        self.assertEqual(stats['total_principal'], Decimal('22000.00'))
        self.assertEqual(stats['total_collected'], Decimal('1000.00'))
        self.assertEqual(stats['defaulters'], 1)
        self.assertEqual(stats['currency'], 'INR')
