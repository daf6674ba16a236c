# loans/stats.py

"""
Read-side statistics for loans and installments.

Defaulter status, overdue figures and display labels are derived from the
installment history on every call and never stored. Every function takes
an explicit `today` so results can be reproduced for a fixed date.
"""

from django.db.models import Sum
from dateutil.relativedelta import relativedelta
from decimal import Decimal
import logging

from core.utils import get_today, get_setting, get_base_currency
from .utils import summarize_overdue, calculate_days_overdue

logger = logging.getLogger(__name__)

# Loans whose installments are no longer chased
SETTLED_STATUSES = ('completed', 'cancelled')

# Loans the defaulter classifier skips
NEVER_DEFAULTED_STATUSES = ('completed',)


def _borrowers_with_loans():
    from borrowers.models import Borrower
    return (
        Borrower.objects
        .filter(loans__isnull=False)
        .distinct()
        .prefetch_related('loans__installments')
    )


def _guarantor(loan):
    """Loan-level guarantor details, falling back to the borrower's"""
    borrower = loan.borrower
    return {
        'guarantor_name': loan.guarantor_name or borrower.guarantor_name or '',
        'guarantor_phone': loan.guarantor_phone or borrower.guarantor_phone or '',
    }


# =============================================================================
# DEFAULTER STATISTICS
# =============================================================================

def get_loan_defaulter_status(loan, today=None):
    """
    Defaulter picture of one loan.

    Derived from the installment history only. Completed loans are never
    defaulters; the stored status of any other loan does not decide it.

    Returns:
        dict: max_streak, missed_count, overdue_amount, max_days_overdue, is_defaulter
    """
    today = today or get_today()
    summary = summarize_overdue(loan.installments.all(), today)

    if loan.status in NEVER_DEFAULTED_STATUSES:
        summary['is_defaulter'] = False

    return summary


def get_borrower_defaulter_summary(borrower, today=None):
    """
    Aggregate defaulter figures across a borrower's loans.

    Returns:
        dict: borrower, is_defaulter, defaulted_loans, consecutive_missed,
              total_outstanding, max_days_overdue
    """
    today = today or get_today()

    defaulted = [
        status for status in (
            get_loan_defaulter_status(loan, today) for loan in borrower.loans.all()
        )
        if status['is_defaulter']
    ]

    return {
        'borrower': borrower,
        'borrower_id': borrower.pk,
        'name': borrower.name,
        'phone': borrower.phone,
        'is_defaulter': bool(defaulted),
        'defaulted_loans': len(defaulted),
        'consecutive_missed': sum(status['missed_count'] for status in defaulted),
        'total_outstanding': sum((status['overdue_amount'] for status in defaulted), Decimal('0.00')),
        'max_days_overdue': max((status['max_days_overdue'] for status in defaulted), default=0),
    }


def get_defaulters(today=None):
    """
    One row per defaulted loan, most overdue first.

    Returns:
        list: dicts with loan, borrower and guarantor display fields
    """
    from .models import Loan

    today = today or get_today()
    loans = (
        Loan.objects
        .exclude(status__in=NEVER_DEFAULTED_STATUSES)
        .select_related('borrower')
        .prefetch_related('installments')
    )

    rows = []
    for loan in loans:
        status = get_loan_defaulter_status(loan, today)
        if not status['is_defaulter']:
            continue

        rows.append({
            'loan_id': loan.pk,
            'loan_number': loan.loan_number,
            'loan_strategy': loan.loan_strategy,
            'loan_status': loan.status,
            'amount': loan.amount,
            'borrower_name': loan.borrower.name,
            'borrower_phone': loan.borrower.phone,
            'borrower_address': loan.borrower.address,
            **_guarantor(loan),
            **status,
        })

    rows.sort(key=lambda row: (row['max_days_overdue'], row['missed_count']), reverse=True)
    logger.debug(f"Found {len(rows)} defaulted loans as of {today}")
    return rows


def get_recent_defaulters(limit=None, today=None):
    """
    Borrowers in default, ranked by defaulted loans, then missed
    installments, then days overdue.
    """
    today = today or get_today()
    if limit is None:
        limit = get_setting('RECENT_DEFAULTERS_LIMIT')

    summaries = [get_borrower_defaulter_summary(borrower, today) for borrower in _borrowers_with_loans()]

    defaulters = [summary for summary in summaries if summary['is_defaulter']]
    defaulters.sort(
        key=lambda s: (s['defaulted_loans'], s['consecutive_missed'], s['max_days_overdue']),
        reverse=True
    )
    return defaulters[:limit]


# =============================================================================
# LOAN LISTS
# =============================================================================

def get_next_installment(loan, today=None):
    """Earliest uncollected installment due today or later, or None"""
    today = today or get_today()
    pending = [
        inst for inst in loan.installments.all()
        if inst.status != 'collected' and inst.due_date >= today
    ]
    return min(pending, key=lambda inst: inst.due_date, default=None)


def get_loan_display_status(loan, today=None):
    """Label for loan lists: Completed, Cancelled, Defaulter, Overdue or Active"""
    today = today or get_today()

    if loan.status == 'completed':
        return 'Completed'
    if loan.status == 'cancelled':
        return 'Cancelled'

    status = get_loan_defaulter_status(loan, today)
    if status['is_defaulter']:
        return 'Defaulter'
    if status['missed_count']:
        return 'Overdue'
    return 'Active'


def get_recent_loans(limit=None, today=None):
    """Newest loans with borrower name, next due date and display status"""
    from .models import Loan

    today = today or get_today()
    if limit is None:
        limit = get_setting('RECENT_LOANS_LIMIT')

    loans = (
        Loan.objects
        .select_related('borrower')
        .prefetch_related('installments')
        .order_by('-created_at')[:limit]
    )

    rows = []
    for loan in loans:
        next_installment = get_next_installment(loan, today)
        rows.append({
            'loan': loan,
            'loan_number': loan.loan_number,
            'borrower_name': loan.borrower.name,
            'amount': loan.amount,
            'loan_strategy': loan.loan_strategy,
            'start_date': loan.start_date,
            'next_due_date': next_installment.due_date if next_installment else None,
            'display_status': get_loan_display_status(loan, today),
        })
    return rows


# =============================================================================
# INSTALLMENT LISTS
# =============================================================================

def get_upcoming_installments(today=None):
    """Uncollected installments of open loans due within the upcoming window"""
    from .models import Installment

    today = today or get_today()
    window_end = today + relativedelta(months=get_setting('UPCOMING_WINDOW_MONTHS'))

    return list(
        Installment.objects
        .filter(due_date__gte=today, due_date__lt=window_end)
        .exclude(status='collected')
        .exclude(loan__status__in=SETTLED_STATUSES)
        .select_related('loan', 'loan__borrower')
        .order_by('due_date', 'created_at')
    )


def get_missed_installments(today=None):
    """
    Every overdue, uncollected installment of an open loan, oldest first.

    Returns:
        list: dicts with installment, loan, borrower and guarantor display fields
    """
    from .models import Installment

    today = today or get_today()
    installments = (
        Installment.objects
        .filter(due_date__lt=today)
        .exclude(status='collected')
        .exclude(loan__status__in=SETTLED_STATUSES)
        .select_related('loan', 'loan__borrower')
        .order_by('due_date', 'created_at')
    )

    rows = []
    for installment in installments:
        loan = installment.loan
        rows.append({
            'installment': installment,
            'loan_number': loan.loan_number,
            'borrower_name': loan.borrower.name,
            'borrower_phone': loan.borrower.phone,
            'due_date': installment.due_date,
            'amount': installment.amount,
            'due_amount': installment.due_amount,
            'days_overdue': calculate_days_overdue(installment.due_date, today),
            **_guarantor(loan),
        })
    return rows


# =============================================================================
# DASHBOARD
# =============================================================================

def get_dashboard_stats(today=None):
    """Headline figures for the dashboard"""
    from .models import Loan, Installment

    today = today or get_today()
    loans = Loan.objects.all()

    overdue_count = (
        Installment.objects
        .filter(due_date__lt=today)
        .exclude(status='collected')
        .exclude(loan__status__in=SETTLED_STATUSES)
        .count()
    )
    defaulter_count = sum(
        1 for borrower in _borrowers_with_loans()
        if get_borrower_defaulter_summary(borrower, today)['is_defaulter']
    )

    return {
        'currency': get_base_currency(),
        'total_loans': loans.count(),
        'active_loans': loans.filter(status='active').count(),
        'completed_loans': loans.filter(status='completed').count(),
        'overdue_installments': overdue_count,
        'total_principal': loans.aggregate(total=Sum('amount'))['total'] or Decimal('0.00'),
        'total_collected': Installment.objects.aggregate(total=Sum('paid_amount'))['total'] or Decimal('0.00'),
        'defaulters': defaulter_count,
    }

