# utils/models.py

from django.db import models
import uuid
import logging

logger = logging.getLogger(__name__)

# =============================================================================
# BASE MODEL
# =============================================================================

class BaseModel(models.Model):
    """
    Base model shared by every loanbook record.

    Features:
    - UUID primary key
    - Created/updated timestamps
    - Change reason tracking (why the last change was made)
    """

    # Core identification
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Timestamp fields
    created_at = models.DateTimeField("Created At", auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField("Updated At", auto_now=True, db_index=True)

    # Change reason tracking
    change_reason = models.CharField("Change Reason", max_length=255, blank=True, null=True)

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        """Log creation of new records before handing off to Django"""
        if self._state.adding:
            logger.debug(f"Creating {self.__class__.__name__} {self.pk}")
        return super().save(*args, **kwargs)

    def get_audit_trail(self):
        """Get audit information for this record"""
        return {
            'id': str(self.id),
            'created_at': self.created_at,
            'updated_at': self.updated_at,
            'last_change_reason': self.change_reason,
        }

    def set_change_reason(self, reason):
        """
        Set the reason for the next change to this object.

        Usage:
            loan = Loan.objects.get(id=some_id)
            loan.status = 'cancelled'
            loan.set_change_reason("Borrower withdrew the request")
            loan.save()
        """
        self.change_reason = reason
