# loans/utils.py

"""
Loans Utility Functions

Pure utility functions with NO side effects (no database writes, apart from
the row lock taken while numbering a loan):
- Loan number generation
- Repayment strategy variants (schedule generation, collection cap, auto-completion)
- Installment amount calculations
- Installment state derivation after a collection or edit
- Defaulter classification (overdue detection, missed streaks)
- Collateral weight calculations

Database writes are handled by signals.py and services.py.
"""

from django.db import transaction
from django.utils import timezone
from decimal import Decimal, ROUND_HALF_UP
from dateutil.relativedelta import relativedelta
import logging

from core.utils import get_setting, round_money, get_today

logger = logging.getLogger(__name__)

ZERO = Decimal('0.00')
THREE_PLACES = Decimal('0.001')


# =============================================================================
# NUMBER GENERATION
# =============================================================================

def generate_loan_number(strategy_code=None):
    """
    Generate unique loan number.

    Format: LN-{STRATEGY}-YYYYMMDD-XXXX (LN-YYYYMMDD-XXXX without a strategy)

    Args:
        strategy_code (str, optional): Loan strategy code

    Returns:
        str: Unique loan number

    Example:
        >>> generate_loan_number('emi')
        'LN-EMI-20250129-0001'
    """
    from loans.models import Loan

    timestamp = timezone.now().strftime('%Y%m%d')

    if strategy_code:
        prefix = strategy_code.replace('_', '').upper()[:4]
        base_id = f"LN-{prefix}-{timestamp}"
    else:
        base_id = f"LN-{timestamp}"

    with transaction.atomic():
        existing_loans = Loan.objects.filter(
            loan_number__startswith=base_id
        ).select_for_update()

        max_counter = 0
        for loan_num in existing_loans.values_list('loan_number', flat=True):
            try:
                max_counter = max(max_counter, int(loan_num.split('-')[-1]))
            except (ValueError, IndexError):
                continue

        loan_number = f"{base_id}-{max_counter + 1:04d}"

        logger.info(f"Generated loan number: {loan_number}")
        return loan_number


# =============================================================================
# AMOUNT CALCULATIONS
# =============================================================================

def calculate_emi_amount(principal, tenure, custom_emi_amount=None):
    """
    Per-installment amount for an EMI loan.

    No interest is compounded: the amount is the custom EMI when one is
    given, otherwise principal / tenure.

    Args:
        principal (Decimal): Loan amount
        tenure (int): Number of installments
        custom_emi_amount (Decimal, optional): Override

    Returns:
        Decimal: Amount rounded to 2 dp

    Example:
        >>> calculate_emi_amount(Decimal('12000'), 12)
        Decimal('1000.00')
    """
    if custom_emi_amount:
        return round_money(custom_emi_amount)
    return round_money(Decimal(str(principal)) / Decimal(tenure))


def calculate_flat_monthly_amount(principal, flat_monthly_amount=None):
    """
    Monthly amount for a flat loan: the configured amount, else a share of principal.

    Example:
        >>> calculate_flat_monthly_amount(Decimal('10000'))
        Decimal('1000.00')
    """
    if flat_monthly_amount:
        return round_money(flat_monthly_amount)
    rate = Decimal(str(get_setting('FLAT_DEFAULT_RATE')))
    return round_money(Decimal(str(principal)) * rate)


def calculate_net_weight(metal_weight, purity):
    """
    Net metal weight adjusted for purity, rounded to 3 dp.

    Example:
        >>> calculate_net_weight(Decimal('10'), Decimal('91.6'))
        Decimal('9.160')
    """
    if metal_weight is None or purity is None:
        return Decimal('0.000')
    net = Decimal(str(metal_weight)) * Decimal(str(purity)) / Decimal('100')
    return net.quantize(THREE_PLACES, rounding=ROUND_HALF_UP)


def add_months(start_date, months):
    """Calendar-month increment (Jan 31 + 1 month -> Feb 28/29)"""
    return start_date + relativedelta(months=months)


def build_monthly_schedule(anchor_date, count, amount, first_offset=0):
    """
    Build `count` monthly installments due `first_offset`, `first_offset + 1`, ...
    months after `anchor_date`.

    Every due date is offset from the anchor itself, so a short month does
    not pull later due dates back (Jan 31 -> Feb 28, Mar 31, Apr 30).

    Returns:
        list: dicts with installment_number, due_date, amount, due_amount
    """
    amount = round_money(amount)
    return [
        {
            'installment_number': number + 1,
            'due_date': add_months(anchor_date, first_offset + number),
            'amount': amount,
            'due_amount': amount,
        }
        for number in range(count)
    ]


def append_upi_reference(notes, upi_id):
    """
    Append a UPI reference to payment notes.

    Example:
        >>> append_upi_reference('Paid at shop', 'ravi@upi')
        'Paid at shop\\nUPI ID: ravi@upi'
    """
    if not upi_id:
        return notes
    reference = f"UPI ID: {upi_id}"
    return f"{notes}\n{reference}" if notes else reference


# =============================================================================
# REPAYMENT STRATEGIES
# =============================================================================

class RepaymentStrategy:
    """
    Behaviour shared by every loan strategy.

    Each variant answers three questions: which installments are generated
    when the loan is created, whether a collection may push an installment
    past its scheduled amount, and whether the loan completes on its own once
    every installment is collected.
    """

    code = None
    caps_collection = True
    auto_completes = False

    def generate_schedule(self, loan):
        return []

    def is_complete(self, installments):
        return False

    def __repr__(self):
        return f"<{self.__class__.__name__} {self.code}>"


class EmiStrategy(RepaymentStrategy):
    """Fixed tenure of equal monthly installments"""

    code = 'emi'
    auto_completes = True

    def generate_schedule(self, loan):
        tenure = loan.tenure or get_setting('DEFAULT_EMI_TENURE')
        amount = calculate_emi_amount(loan.amount, tenure, loan.custom_emi_amount)
        return build_monthly_schedule(loan.start_date, tenure, amount, first_offset=1)

    def is_complete(self, installments):
        installments = list(installments)
        if not installments:
            return False
        return all(
            inst.status == 'collected' and (inst.paid_amount or ZERO) >= inst.amount
            for inst in installments
        )


class FlatStrategy(RepaymentStrategy):
    """Open-ended monthly schedule; one installment up front, more added later"""

    code = 'flat'
    caps_collection = False

    def generate_schedule(self, loan):
        amount = calculate_flat_monthly_amount(loan.amount, loan.flat_monthly_amount)
        return build_monthly_schedule(loan.start_date, 1, amount, first_offset=1)


class CustomStrategy(RepaymentStrategy):
    """Installments curated by hand"""

    code = 'custom'


class GoldSilverStrategy(RepaymentStrategy):
    """Collateral-backed loan with a hand-curated schedule"""

    code = 'gold_silver'


STRATEGIES = {
    strategy.code: strategy
    for strategy in (EmiStrategy(), FlatStrategy(), CustomStrategy(), GoldSilverStrategy())
}


def get_strategy(code):
    """
    Look up the strategy variant for a loan_strategy code.

    Returns:
        RepaymentStrategy or None if the code is not recognised
    """
    return STRATEGIES.get(code)


def generate_schedule(loan):
    """
    Installments to create for a newly created loan.

    An unrecognised strategy yields an empty schedule rather than an error.

    Returns:
        list: dicts with installment_number, due_date, amount, due_amount
    """
    strategy = get_strategy(loan.loan_strategy)
    if strategy is None:
        logger.warning(
            f"Unknown loan strategy '{loan.loan_strategy}' for loan {loan.loan_number}; "
            f"no installments generated"
        )
        return []
    return strategy.generate_schedule(loan)


def collection_is_capped(loan_strategy):
    """Whether collections on this strategy may not exceed the scheduled amount"""
    strategy = get_strategy(loan_strategy)
    return True if strategy is None else strategy.caps_collection


# =============================================================================
# INSTALLMENT STATE
# =============================================================================

def derive_installment_state(scheduled_amount, paid_amount):
    """
    Outstanding balance and status for an installment given what has been paid.

    Args:
        scheduled_amount (Decimal): Installment amount
        paid_amount (Decimal): Cumulative amount collected

    Returns:
        tuple: (due_amount, status)

    Example:
        >>> derive_installment_state(Decimal('1000'), Decimal('400'))
        (Decimal('600.00'), 'due_soon')
    """
    paid_amount = paid_amount or ZERO
    due_amount = round_money(max(ZERO, scheduled_amount - paid_amount))

    if paid_amount <= ZERO:
        return due_amount, 'upcoming'
    if due_amount > ZERO:
        return due_amount, 'due_soon'
    return due_amount, 'collected'


# =============================================================================
# DEFAULTER CLASSIFICATION
# =============================================================================

def is_installment_overdue(installment, today=None):
    """Due strictly before today and not collected"""
    today = today or get_today()
    return installment.due_date < today and installment.status != 'collected'


def calculate_days_overdue(due_date, today=None):
    """Whole days since the due date; 0 when not yet due"""
    today = today or get_today()
    return max(0, (today - due_date).days)


def calculate_missed_streak(installments, today=None):
    """
    Longest run of consecutive overdue, uncollected installments.

    Installments are walked in due-date order. A collected installment or one
    due today or later breaks the run.

    Example:
        missed, missed, collected, missed, missed -> 2
        missed, collected, missed -> 1
    """
    today = today or get_today()
    streak = 0
    max_streak = 0

    for installment in sorted(installments, key=lambda inst: inst.due_date):
        if is_installment_overdue(installment, today):
            streak += 1
            max_streak = max(max_streak, streak)
        else:
            streak = 0

    return max_streak


def is_defaulted(installments, today=None, threshold=None):
    """True when the missed streak reaches the defaulter threshold (2 by default)"""
    if threshold is None:
        threshold = get_setting('DEFAULTER_STREAK_THRESHOLD')
    return calculate_missed_streak(installments, today) >= threshold


def summarize_overdue(installments, today=None, threshold=None):
    """
    Overdue picture of one loan's installments.

    Returns:
        dict: max_streak, missed_count, overdue_amount, max_days_overdue, is_defaulter
    """
    today = today or get_today()
    if threshold is None:
        threshold = get_setting('DEFAULTER_STREAK_THRESHOLD')

    installments = list(installments)
    overdue = [inst for inst in installments if is_installment_overdue(inst, today)]
    max_streak = calculate_missed_streak(installments, today)

    return {
        'max_streak': max_streak,
        'missed_count': len(overdue),
        'overdue_amount': sum((inst.amount for inst in overdue), ZERO),
        'max_days_overdue': max(
            (calculate_days_overdue(inst.due_date, today) for inst in overdue),
            default=0
        ),
        'is_defaulter': max_streak >= threshold,
    }
