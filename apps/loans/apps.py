# loans/apps.py

from django.apps import AppConfig
import logging

logger = logging.getLogger(__name__)


class LoansConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "loans"
    verbose_name = "Loan Management"

    def ready(self):
        """
        Import signals when the app is ready.
        This ensures all signal handlers are registered.
        """
        import loans.signals
        logger.debug("Loans app signals registered")
