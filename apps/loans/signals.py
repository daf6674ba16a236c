# loans/signals.py

"""
Loans Signals

Handles automatic operations on model save/delete:
- Loan number generation
- Schedule generation when a loan is created
- Audit logging for loans, installments and payment transactions

Number and schedule generation are delegated to utils.py.
"""

from django.db.models.signals import pre_save, post_save, post_delete
from django.dispatch import receiver
import logging

from .models import Loan, LoanItem, Installment, PaymentTransaction

logger = logging.getLogger(__name__)


# =============================================================================
# LOAN SIGNALS
# =============================================================================

@receiver(pre_save, sender=Loan)
def generate_loan_number(sender, instance, **kwargs):
    """
    Generate loan number if not set.
    Delegates to utils.generate_loan_number() for generation logic.
    """
    if not instance.loan_number:
        from .utils import generate_loan_number as build_loan_number
        instance.loan_number = build_loan_number(instance.loan_strategy)


@receiver(post_save, sender=Loan)
def generate_installments_on_creation(sender, instance, created, **kwargs):
    """
    Generate the repayment schedule when a loan is created.

    Errors propagate so the surrounding atomic block rolls the loan back
    rather than leaving it without its schedule.
    """
    if not created:
        return

    from .utils import generate_schedule

    schedule_items = generate_schedule(instance)
    if not schedule_items:
        logger.info(f"No installments generated for {instance.loan_strategy} loan {instance.loan_number}")
        return

    Installment.objects.bulk_create([
        Installment(
            loan=instance,
            due_date=item['due_date'],
            amount=item['amount'],
            due_amount=item['due_amount'],
            status='upcoming',
        )
        for item in schedule_items
    ])

    logger.info(
        f"Generated {len(schedule_items)} installments for loan {instance.loan_number}"
    )


@receiver(post_save, sender=Loan)
def log_loan_changes(sender, instance, created, **kwargs):
    """Log loan creation and status changes"""
    if created:
        logger.info(
            f"Loan {instance.loan_number} created for {instance.borrower.name} | "
            f"Strategy: {instance.loan_strategy} | Amount: {instance.amount}"
        )
    elif instance.change_reason:
        logger.info(
            f"Loan {instance.loan_number} updated | Status: {instance.status} | "
            f"Reason: {instance.change_reason}"
        )


@receiver(post_delete, sender=Loan)
def log_loan_deletion(sender, instance, **kwargs):
    logger.warning(f"Loan {instance.loan_number} deleted")


# =============================================================================
# COLLATERAL SIGNALS
# =============================================================================

@receiver(post_save, sender=LoanItem)
def log_loan_item_creation(sender, instance, created, **kwargs):
    if created:
        logger.info(
            f"Collateral {instance.item_name} ({instance.metal_type}, {instance.net_weight} g) "
            f"recorded for loan {instance.loan.loan_number}"
        )


# =============================================================================
# INSTALLMENT & TRANSACTION SIGNALS
# =============================================================================

@receiver(post_delete, sender=Installment)
def log_installment_deletion(sender, instance, **kwargs):
    logger.info(f"Installment due {instance.due_date} ({instance.amount}) deleted")


@receiver(post_save, sender=PaymentTransaction)
def log_transaction_creation(sender, instance, created, **kwargs):
    """Log payment transaction creation"""
    if created:
        logger.info(
            f"Payment of {instance.amount} recorded on {instance.paid_date} | "
            f"Method: {instance.payment_method or 'unspecified'} | "
            f"Installment: {instance.installment_id}"
        )
