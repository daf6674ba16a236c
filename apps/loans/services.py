# loans/services.py

"""
Loans Business Logic Services

Contains the multi-step workflows that shouldn't be in models or signals:
- Loan creation, updates and collateral management
- Installment management (custom and bulk additions, deletion)
- Collection ledger (collect, reset, transaction edit/delete)
- Loan completion evaluation

Every mutating operation runs in one atomic block and locks the rows it
reads before writing, so concurrent collections on the same installment
serialize and the amount cap always sees the latest paid amount.
"""

from django.db import transaction
from django.db.models import Sum
from django.core.exceptions import ValidationError
from decimal import Decimal
import logging

from .models import Loan, LoanItem, Installment, PaymentTransaction, PAYMENT_METHODS
from .exceptions import NotFound, InvalidAmount
from .utils import (
    get_strategy,
    collection_is_capped,
    derive_installment_state,
    build_monthly_schedule,
    calculate_flat_monthly_amount,
    append_upi_reference,
    ZERO,
)
from core.utils import parse_amount, parse_date, get_today, round_money

logger = logging.getLogger(__name__)


# =============================================================================
# LOOKUP & VALIDATION HELPERS
# =============================================================================

def _get_object(queryset, pk):
    """Fetch one row or raise NotFound (malformed ids count as missing)"""
    try:
        return queryset.get(pk=pk)
    except (queryset.model.DoesNotExist, ValidationError, ValueError):
        raise NotFound(queryset.model.__name__, pk)


def _clean_payment_method(value):
    if value in (None, ''):
        return None
    if value not in dict(PAYMENT_METHODS):
        raise ValidationError({'payment_method': f"Unknown payment method '{value}'."})
    return value


def _clean_installment_status(value):
    if value in (None, ''):
        return None
    if value not in dict(Installment.STATUS_CHOICES):
        raise ValidationError({'status': f"Unknown installment status '{value}'."})
    return value


def _clean_positive_int(value, field):
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError({field: "Enter a whole number."})
    if number < 1:
        raise ValidationError({field: "Must be at least 1."})
    return number


def _clean_item(item):
    """Validate one collateral item dict"""
    metal_type = item.get('metal_type')
    if metal_type not in dict(LoanItem.METAL_TYPES):
        raise ValidationError({'metal_type': "Metal type must be gold or silver."})

    item_name = (item.get('item_name') or '').strip()
    if not item_name:
        raise ValidationError({'item_name': "This field is required."})

    purity = parse_amount(item.get('purity'), field='purity')
    if purity > Decimal('100'):
        raise ValidationError({'purity': "Purity must be between 0 and 100."})

    return {
        'metal_type': metal_type,
        'item_name': item_name,
        'metal_weight': parse_amount(item.get('metal_weight'), field='metal_weight'),
        'purity': purity,
        'notes': item.get('notes'),
    }


# =============================================================================
# LOAN COMPLETION SERVICES
# =============================================================================

class CompletionService:
    """Decide when a loan's ledger closes it out"""

    @staticmethod
    def check_and_complete(loan_id, today=None):
        """
        Mark a loan completed when its strategy auto-completes and every
        installment is collected in full.

        No-op for loans that are already completed, defaulted or cancelled,
        and for loans without installments.

        Returns:
            bool: True if the loan transitioned to completed
        """
        with transaction.atomic():
            loan = _get_object(Loan.objects.select_for_update(), loan_id)

            if loan.is_closed:
                return False

            strategy = loan.strategy
            if strategy is None or not strategy.auto_completes:
                return False

            installments = list(loan.installments.all())
            if not installments or not strategy.is_complete(installments):
                return False

            loan.status = 'completed'
            loan.completed_date = today or get_today()
            loan.set_change_reason("All installments collected")
            loan.save(update_fields=['status', 'completed_date', 'change_reason', 'updated_at'])

        logger.info(f"Loan {loan.loan_number} completed on {loan.completed_date}")
        return True

    @staticmethod
    def reopen_if_incomplete(loan_id):
        """
        Move an auto-completed loan back to active when its ledger no longer
        shows every installment collected (after a reset, edit or deletion).

        Returns:
            bool: True if the loan was reopened
        """
        with transaction.atomic():
            loan = _get_object(Loan.objects.select_for_update(), loan_id)

            if loan.status != 'completed':
                return False

            strategy = loan.strategy
            if strategy is None or not strategy.auto_completes:
                return False

            if strategy.is_complete(loan.installments.all()):
                return False

            loan.status = 'active'
            loan.completed_date = None
            loan.set_change_reason("Installment reopened after completion")
            loan.save(update_fields=['status', 'completed_date', 'change_reason', 'updated_at'])

        logger.info(f"Loan {loan.loan_number} reopened")
        return True

    @staticmethod
    def evaluate(loan_id, reopen=False, today=None):
        """
        Run the completion check without ever failing the caller.

        Runs in its own savepoint; any error is logged and swallowed so the
        collection or reset that triggered it still commits.
        """
        try:
            with transaction.atomic():
                if reopen and CompletionService.reopen_if_incomplete(loan_id):
                    return False
                return CompletionService.check_and_complete(loan_id, today=today)
        except Exception as e:
            logger.error(f"Error checking completion for loan {loan_id}: {e}", exc_info=True)
            return False


# =============================================================================
# LOAN SERVICES
# =============================================================================

class LoanService:
    """Loan lifecycle operations"""

    UPDATABLE_FIELDS = (
        'amount', 'start_date', 'tenure', 'custom_emi_amount', 'flat_monthly_amount',
        'notes', 'guarantor_name', 'guarantor_phone', 'guarantor_address',
    )

    @staticmethod
    def get_loan(loan_id):
        return _get_object(Loan.objects.select_related('borrower'), loan_id)

    @staticmethod
    def create_loan(borrower, amount, start_date, loan_strategy=None, tenure=None,
                    custom_emi_amount=None, flat_monthly_amount=None, notes=None,
                    items=None, guarantor_name=None, guarantor_phone=None,
                    guarantor_address=None):
        """
        Create a loan, its collateral items and its initial schedule.

        Args:
            borrower: Borrower instance or id
            amount: Principal
            start_date: date or 'YYYY-MM-DD'
            loan_strategy: 'emi' (default), 'flat', 'custom' or 'gold_silver'
            tenure: Number of EMI installments (12 when omitted)
            custom_emi_amount: Overrides amount / tenure
            flat_monthly_amount: Monthly amount for flat loans
            items: list of dicts (metal_type, item_name, metal_weight, purity, notes)

        Returns:
            Loan

        Raises:
            ValidationError: malformed input
            NotFound: borrower does not exist
        """
        from borrowers.models import Borrower

        if not isinstance(borrower, Borrower):
            borrower = _get_object(Borrower.objects.all(), borrower)

        amount = parse_amount(amount, field='amount')
        start_date = parse_date(start_date, field='start_date')
        loan_strategy = loan_strategy or 'emi'

        if tenure not in (None, ''):
            tenure = _clean_positive_int(tenure, 'tenure')
        else:
            tenure = None

        custom_emi_amount = parse_amount(custom_emi_amount, field='custom_emi_amount', allow_none=True)
        flat_monthly_amount = parse_amount(flat_monthly_amount, field='flat_monthly_amount', allow_none=True)
        cleaned_items = [_clean_item(item) for item in (items or [])]

        if get_strategy(loan_strategy) is None:
            logger.warning(f"Creating loan with unrecognised strategy '{loan_strategy}'")

        with transaction.atomic():
            loan = Loan.objects.create(
                borrower=borrower,
                amount=amount,
                loan_strategy=loan_strategy,
                start_date=start_date,
                tenure=tenure,
                custom_emi_amount=custom_emi_amount,
                flat_monthly_amount=flat_monthly_amount,
                notes=notes,
                guarantor_name=guarantor_name,
                guarantor_phone=guarantor_phone,
                guarantor_address=guarantor_address,
            )

            for item in cleaned_items:
                LoanItem.objects.create(loan=loan, **item)

        return loan

    @staticmethod
    def update_loan(loan_id, **changes):
        """
        Update loan terms and display fields.

        The strategy cannot change and the existing schedule is left as is;
        a different schedule needs a new loan.
        """
        if 'loan_strategy' in changes:
            new_strategy = changes.pop('loan_strategy')
        else:
            new_strategy = None

        unknown = set(changes) - set(LoanService.UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        with transaction.atomic():
            loan = _get_object(Loan.objects.select_for_update(), loan_id)

            if new_strategy is not None and new_strategy != loan.loan_strategy:
                raise ValidationError({'loan_strategy': "Loan strategy cannot be changed after creation."})

            if 'amount' in changes:
                changes['amount'] = parse_amount(changes['amount'], field='amount')
            if 'start_date' in changes:
                changes['start_date'] = parse_date(changes['start_date'], field='start_date')
            if 'tenure' in changes:
                tenure = changes['tenure']
                changes['tenure'] = None if tenure in (None, '') else _clean_positive_int(tenure, 'tenure')
            for field in ('custom_emi_amount', 'flat_monthly_amount'):
                if field in changes:
                    changes[field] = parse_amount(changes[field], field=field, allow_none=True)

            for field, value in changes.items():
                setattr(loan, field, value)
            loan.set_change_reason("Loan details updated")
            loan.save()

        logger.info(f"Updated loan {loan.loan_number}: {', '.join(sorted(changes))}")
        return loan

    @staticmethod
    def update_loan_status(loan_id, status, reason=None, today=None):
        """Set a loan's status explicitly (cancel, mark defaulted, complete by hand)"""
        if status not in dict(Loan.STATUS_CHOICES):
            raise ValidationError({'status': f"Unknown loan status '{status}'."})

        with transaction.atomic():
            loan = _get_object(Loan.objects.select_for_update(), loan_id)
            loan.status = status
            loan.completed_date = (today or get_today()) if status == 'completed' else None
            loan.set_change_reason(reason or f"Status set to {status}")
            loan.save(update_fields=['status', 'completed_date', 'change_reason', 'updated_at'])

        return loan

    @staticmethod
    def update_loan_notes(loan_id, notes):
        with transaction.atomic():
            loan = _get_object(Loan.objects.select_for_update(), loan_id)
            loan.notes = notes
            loan.save(update_fields=['notes', 'updated_at'])
        return loan

    @staticmethod
    @transaction.atomic
    def replace_loan_items(loan_id, items):
        """Replace every collateral item on a loan"""
        loan = _get_object(Loan.objects.select_for_update(), loan_id)
        cleaned_items = [_clean_item(item) for item in (items or [])]

        deleted, _ = loan.items.all().delete()
        created = [LoanItem.objects.create(loan=loan, **item) for item in cleaned_items]

        logger.info(
            f"Replaced collateral on loan {loan.loan_number}: "
            f"{deleted} removed, {len(created)} added"
        )
        return created

    @staticmethod
    def delete_loan(loan_id):
        """
        Delete a loan with its installments and transactions.

        Returns:
            bool: False if the loan does not exist
        """
        try:
            loan = _get_object(Loan.objects.all(), loan_id)
        except NotFound:
            return False
        loan.delete()
        return True

    @staticmethod
    def list_installments(loan_id):
        """Installments of a loan in due-date order"""
        loan = _get_object(Loan.objects.all(), loan_id)
        return list(loan.installments.order_by('due_date', 'created_at'))


# =============================================================================
# INSTALLMENT SERVICES
# =============================================================================

class InstallmentService:
    """Add and remove installments outside the generated schedule"""

    @staticmethod
    def get_installment(installment_id):
        return _get_object(Installment.objects.select_related('loan'), installment_id)

    @staticmethod
    @transaction.atomic
    def add_custom_installment(loan_id, amount, due_date, notes=None):
        """Add one upcoming installment to a loan"""
        loan = _get_object(Loan.objects.select_for_update(), loan_id)
        amount = parse_amount(amount, field='amount')
        due_date = parse_date(due_date, field='due_date')

        installment = Installment.objects.create(
            loan=loan,
            due_date=due_date,
            amount=round_money(amount),
            notes=notes or None,
        )

        logger.info(f"Added installment of {installment.amount} due {due_date} to loan {loan.loan_number}")

        # A completed loan owes again once it gains an unpaid installment
        CompletionService.evaluate(loan.pk, reopen=True)
        return installment

    @staticmethod
    def resolve_bulk_amount(loan, custom_amount=None):
        """
        Amount for installments added in bulk.

        Precedence: custom amount, flat monthly amount, custom EMI amount,
        the latest installment's amount, then the flat default share of principal.
        """
        if custom_amount not in (None, ''):
            return round_money(parse_amount(custom_amount, field='custom_amount'))
        if loan.loan_strategy == 'flat':
            return calculate_flat_monthly_amount(loan.amount, loan.flat_monthly_amount)
        if loan.custom_emi_amount:
            return round_money(loan.custom_emi_amount)

        latest = loan.installments.order_by('-due_date', '-created_at').first()
        if latest:
            return latest.amount
        return calculate_flat_monthly_amount(loan.amount)

    @staticmethod
    @transaction.atomic
    def add_bulk_installments(loan_id, months, start_due_date, custom_amount=None):
        """
        Add `months` monthly installments starting at `start_due_date`.

        Returns:
            list: created Installment instances
        """
        loan = _get_object(Loan.objects.select_for_update(), loan_id)
        months = _clean_positive_int(months, 'months')
        start_due_date = parse_date(start_due_date, field='start_due_date')
        amount = InstallmentService.resolve_bulk_amount(loan, custom_amount)

        created = [
            Installment.objects.create(
                loan=loan,
                due_date=item['due_date'],
                amount=item['amount'],
            )
            for item in build_monthly_schedule(start_due_date, months, amount)
        ]

        logger.info(
            f"Added {len(created)} installments of {amount} to loan {loan.loan_number} "
            f"starting {start_due_date}"
        )

        CompletionService.evaluate(loan.pk, reopen=True)
        return created

    @staticmethod
    def delete_payment(installment_id):
        """
        Delete an installment and its transactions.

        Returns:
            bool: False if the installment does not exist
        """
        with transaction.atomic():
            try:
                installment = _get_object(Installment.objects.select_for_update(), installment_id)
            except NotFound:
                return False
            loan_id = installment.loan_id
            installment.delete()
            CompletionService.evaluate(loan_id, reopen=True)
        return True


# =============================================================================
# COLLECTION SERVICES
# =============================================================================

class CollectionService:
    """The collection ledger: collect, reset, edit and delete transactions"""

    @staticmethod
    def _lock_installment(installment_id):
        return _get_object(
            Installment.objects.select_for_update().select_related('loan'),
            installment_id
        )

    @staticmethod
    def _lock_transaction(transaction_id):
        """
        Lock a transaction together with its installment.

        The installment row is locked before the transaction row, the same
        order reset_payment uses, so an edit and a reset on one installment
        queue behind each other.

        Returns:
            tuple: (Installment, PaymentTransaction)
        """
        installment_id = _get_object(PaymentTransaction.objects.all(), transaction_id).installment_id
        installment = CollectionService._lock_installment(installment_id)
        payment = _get_object(
            PaymentTransaction.objects.select_for_update().filter(installment=installment),
            transaction_id
        )
        return installment, payment

    @staticmethod
    def _refresh_from_transactions(installment):
        """Re-derive paid/due/status and last payment details from the transaction log"""
        paid = installment.transactions.aggregate(total=Sum('amount'))['total'] or ZERO
        due_amount, status = derive_installment_state(installment.amount, paid)
        latest = installment.transactions.order_by('-paid_date', '-created_at').first()

        installment.paid_amount = paid
        installment.due_amount = due_amount
        installment.status = status
        installment.paid_date = latest.paid_date if latest else None
        installment.payment_method = latest.payment_method if latest else None
        installment.save()
        return installment

    @staticmethod
    def collect_payment(installment_id, paid_amount=None, payment_method=None,
                        paid_date=None, notes=None, status=None, upi_id=None):
        """
        Record a collection against an installment.

        - Only notes on an installment that already has payments: notes are
          updated, nothing else changes.
        - An amount: added to what was already paid. Non-flat installments
          cannot be paid beyond their scheduled amount.
        - status='collected' without an amount on an unpaid installment:
          the full scheduled amount is collected.

        Every amount-bearing collection appends one PaymentTransaction with
        the amount of this collection and re-checks loan completion.

        Returns:
            Installment

        Raises:
            NotFound: installment does not exist
            InvalidAmount: the total would exceed the scheduled amount
            ValidationError: malformed amount, date, method or status
        """
        paid_amount = parse_amount(paid_amount, field='paid_amount', allow_none=True)
        if paid_amount is not None:
            paid_amount = round_money(paid_amount)
        payment_method = _clean_payment_method(payment_method)
        paid_date = parse_date(paid_date, field='paid_date', allow_none=True)
        status = _clean_installment_status(status)

        if payment_method == 'upi':
            notes = append_upi_reference(notes, upi_id)

        with transaction.atomic():
            installment = CollectionService._lock_installment(installment_id)
            loan = installment.loan
            previous_paid = installment.paid_amount or ZERO

            notes_only = (
                notes is not None and paid_amount is None
                and paid_date is None and payment_method is None
            )
            if notes_only and previous_paid > ZERO:
                installment.notes = notes
                installment.save(update_fields=['notes', 'updated_at'])
                logger.info(f"Updated notes on installment {installment.pk}")
                return installment

            if paid_amount is None and status == 'collected' and previous_paid <= ZERO:
                paid_amount = installment.amount

            if paid_amount is None:
                # Metadata only; the ledger decides status once money has moved
                if payment_method is not None:
                    installment.payment_method = payment_method
                if paid_date is not None:
                    installment.paid_date = paid_date
                if notes is not None:
                    installment.notes = notes
                if status is not None and previous_paid <= ZERO:
                    installment.status = status
                installment.save()
                return installment

            total_paid = previous_paid + paid_amount
            if collection_is_capped(loan.loan_strategy) and total_paid > installment.amount:
                raise InvalidAmount(installment.amount, previous_paid, paid_amount)

            paid_date = paid_date or get_today()
            installment.paid_amount = total_paid
            installment.due_amount, installment.status = derive_installment_state(
                installment.amount, total_paid
            )
            installment.paid_date = paid_date
            if payment_method is not None:
                installment.payment_method = payment_method
            if notes is not None:
                installment.notes = notes
            installment.save()

            PaymentTransaction.objects.create(
                installment=installment,
                amount=paid_amount,
                paid_date=paid_date,
                payment_method=payment_method,
                notes=notes,
            )

            logger.info(
                f"Collected {paid_amount} on loan {loan.loan_number} installment due "
                f"{installment.due_date} | Paid: {total_paid}/{installment.amount} | "
                f"Status: {installment.status}"
            )

            CompletionService.evaluate(loan.pk)

        return installment

    @staticmethod
    def reset_payment(installment_id):
        """
        Return an installment to its uncollected state and delete its transactions.

        Returns:
            Installment

        Raises:
            NotFound: installment does not exist
        """
        with transaction.atomic():
            installment = CollectionService._lock_installment(installment_id)

            removed, _ = installment.transactions.all().delete()

            installment.paid_amount = ZERO
            installment.due_amount = installment.amount
            installment.status = 'upcoming'
            installment.paid_date = None
            installment.payment_method = None
            installment.notes = None
            installment.save()

            logger.info(
                f"Reset installment {installment.pk} on loan {installment.loan.loan_number} "
                f"({removed} transactions removed)"
            )

            CompletionService.evaluate(installment.loan_id, reopen=True)

        return installment

    @staticmethod
    def update_transaction(transaction_id, amount=None, paid_date=None,
                           payment_method=None, notes=None):
        """
        Edit a recorded transaction and re-derive its installment.

        The installment total after the edit may not exceed the scheduled
        amount, whatever the loan strategy.

        Returns:
            PaymentTransaction

        Raises:
            NotFound: transaction does not exist
            InvalidAmount: the edited total would exceed the scheduled amount
        """
        amount = parse_amount(amount, field='amount', allow_none=True)
        if amount is not None:
            amount = round_money(amount)
        paid_date = parse_date(paid_date, field='paid_date', allow_none=True)
        payment_method = _clean_payment_method(payment_method)

        with transaction.atomic():
            installment, payment = CollectionService._lock_transaction(transaction_id)

            other_paid = installment.transactions.exclude(pk=payment.pk).aggregate(
                total=Sum('amount')
            )['total'] or ZERO
            new_amount = amount if amount is not None else payment.amount

            if other_paid + new_amount > installment.amount:
                raise InvalidAmount(installment.amount, other_paid, new_amount)

            payment.amount = new_amount
            if paid_date is not None:
                payment.paid_date = paid_date
            if payment_method is not None:
                payment.payment_method = payment_method
            if notes is not None:
                payment.notes = notes
            payment.save()

            CollectionService._refresh_from_transactions(installment)

            logger.info(
                f"Edited transaction {payment.pk} | Amount: {new_amount} | "
                f"Installment paid: {installment.paid_amount}/{installment.amount}"
            )

            CompletionService.evaluate(installment.loan_id, reopen=True)

        return payment

    @staticmethod
    def delete_transaction(transaction_id):
        """
        Delete one transaction and re-derive its installment.

        Returns:
            Installment
        """
        with transaction.atomic():
            installment, payment = CollectionService._lock_transaction(transaction_id)

            payment.delete()
            CollectionService._refresh_from_transactions(installment)

            logger.info(
                f"Deleted transaction {transaction_id} | "
                f"Installment paid: {installment.paid_amount}/{installment.amount}"
            )

            CompletionService.evaluate(installment.loan_id, reopen=True)

        return installment

    @staticmethod
    def list_transactions(installment_id):
        """Transactions of an installment, latest paid date first"""
        installment = _get_object(Installment.objects.all(), installment_id)
        return list(installment.transactions.order_by('-paid_date', '-created_at'))
