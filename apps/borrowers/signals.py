# borrowers/signals.py

"""
Borrowers Signals

Handles logging of borrower lifecycle events. Deleting a borrower cascades
to loans, installments and payment transactions at the database level.
"""

from django.db.models.signals import post_save, post_delete
from django.dispatch import receiver
import logging

from .models import Borrower

logger = logging.getLogger(__name__)


# =============================================================================
# BORROWER SIGNALS
# =============================================================================

@receiver(post_save, sender=Borrower)
def log_borrower_creation(sender, instance, created, **kwargs):
    """
    Log when a new borrower is created.
    """
    if created:
        logger.info(f"New borrower created: {instance.name} | Phone: {instance.phone}")


@receiver(post_delete, sender=Borrower)
def log_borrower_deletion(sender, instance, **kwargs):
    """
    Log when a borrower is deleted.
    """
    logger.warning(f"Borrower deleted: {instance.name} ({instance.pk})")
