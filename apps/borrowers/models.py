# borrowers/models.py

from django.db import models
from django.db.models import Q
from utils.models import BaseModel
import logging

logger = logging.getLogger(__name__)


# =============================================================================
# BORROWER MODEL
# =============================================================================

class Borrower(BaseModel):
    """
    A person who takes loans.

    The loan core only reads these fields (names, phones, guarantor details)
    to label defaulter and missed-installment reports.
    """

    DOCUMENT_TYPES = (
        ('aadhaar', 'Aadhaar Card'),
        ('pan', 'PAN Card'),
        ('voter_id', 'Voter ID'),
        ('passport', 'Passport'),
        ('driving_license', 'Driving License'),
        ('other', 'Other'),
    )

    name = models.CharField(
        "Full Name",
        max_length=200,
        db_index=True
    )

    phone = models.CharField(
        "Phone",
        max_length=20
    )

    address = models.TextField(
        "Address",
        blank=True,
        default=''
    )

    document_type = models.CharField(
        "Document Type",
        max_length=20,
        choices=DOCUMENT_TYPES,
        blank=True,
        default=''
    )

    document_number = models.CharField(
        "Document Number",
        max_length=50,
        blank=True,
        default='',
        help_text="Identity document number; not editable once recorded"
    )

    # Guarantor
    guarantor_name = models.CharField(
        "Guarantor Name",
        max_length=200,
        null=True,
        blank=True
    )

    guarantor_phone = models.CharField(
        "Guarantor Phone",
        max_length=20,
        null=True,
        blank=True
    )

    guarantor_address = models.TextField(
        "Guarantor Address",
        null=True,
        blank=True
    )

    notes = models.TextField(
        "Notes",
        null=True,
        blank=True
    )

    photo_url = models.URLField(
        "Photo URL",
        max_length=500,
        null=True,
        blank=True
    )

    def get_active_loans(self):
        """Get loans that are still running"""
        return self.loans.filter(status='active')

    def get_active_loans_count(self):
        """Get count of active loans"""
        return self.get_active_loans().count()

    @classmethod
    def search(cls, query):
        """Find borrowers by name, phone, address or guarantor details"""
        query = (query or '').strip()
        if not query:
            return cls.objects.all()
        return cls.objects.filter(
            Q(name__icontains=query) |
            Q(phone__icontains=query) |
            Q(address__icontains=query) |
            Q(guarantor_name__icontains=query) |
            Q(guarantor_phone__icontains=query)
        )

    def __str__(self):
        return f"{self.name} ({self.phone})"

    class Meta:
        verbose_name = 'Borrower'
        verbose_name_plural = 'Borrowers'
        ordering = ['name']
        indexes = [
            models.Index(fields=['phone']),
        ]
