# borrowers/apps.py

from django.apps import AppConfig
import logging

logger = logging.getLogger(__name__)


class BorrowersConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "borrowers"
    verbose_name = "Borrower Management"

    def ready(self):
        """
        Import signals when the app is ready.
        This ensures all signal handlers are registered.
        """
        import borrowers.signals
        logger.debug("Borrowers app signals registered")
