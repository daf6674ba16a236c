# loans/models.py

from django.db import models
from django.db.models import Sum
from django.core.validators import MinValueValidator, MaxValueValidator
from decimal import Decimal

from utils.models import BaseModel
from core.utils import format_money, get_today

import logging

logger = logging.getLogger(__name__)


PAYMENT_METHODS = (
    ('cash', 'Cash'),
    ('bank_transfer', 'Bank Transfer'),
    ('upi', 'UPI'),
    ('other', 'Other'),
)


# =============================================================================
# LOAN MODEL
# =============================================================================

class Loan(BaseModel):
    """A loan given to a borrower, with its repayment strategy and terms"""

    STRATEGY_CHOICES = (
        ('emi', 'EMI'),
        ('flat', 'Flat'),
        ('custom', 'Custom'),
        ('gold_silver', 'Gold & Silver'),
    )

    STATUS_CHOICES = (
        ('active', 'Active'),
        ('completed', 'Completed'),
        ('defaulted', 'Defaulted'),
        ('cancelled', 'Cancelled'),
    )

    # Statuses the completion evaluator never moves a loan out of
    CLOSED_STATUSES = ('completed', 'defaulted', 'cancelled')

    # Identification
    loan_number = models.CharField(
        "Loan Number",
        max_length=30,
        unique=True,
        blank=True,
        help_text="Unique loan number"
    )

    borrower = models.ForeignKey(
        'borrowers.Borrower',
        on_delete=models.CASCADE,
        related_name='loans',
        help_text="Borrower who received the loan"
    )

    # Loan Details
    amount = models.DecimalField(
        "Principal Amount",
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))],
        help_text="Original loan amount"
    )

    loan_strategy = models.CharField(
        "Loan Strategy",
        max_length=20,
        choices=STRATEGY_CHOICES,
        default='emi',
        help_text="Repayment shape; fixed once the loan is created"
    )

    start_date = models.DateField(
        "Start Date",
        help_text="Date the loan was given; installments fall due from one month later"
    )

    tenure = models.PositiveIntegerField(
        "Tenure (Months)",
        null=True,
        blank=True,
        validators=[MinValueValidator(1)],
        help_text="Number of monthly installments (EMI only)"
    )

    custom_emi_amount = models.DecimalField(
        "Custom EMI Amount",
        max_digits=12,
        decimal_places=2,
        null=True,
        blank=True,
        help_text="Overrides amount / tenure for EMI loans"
    )

    flat_monthly_amount = models.DecimalField(
        "Flat Monthly Amount",
        max_digits=12,
        decimal_places=2,
        null=True,
        blank=True,
        help_text="Monthly amount for flat loans (defaults to 10% of principal)"
    )

    # Status
    status = models.CharField(
        "Loan Status",
        max_length=15,
        choices=STATUS_CHOICES,
        default='active',
        db_index=True
    )

    completed_date = models.DateField(
        "Completed Date",
        null=True,
        blank=True,
        help_text="Date the loan was marked completed"
    )

    # Guarantor for this particular loan
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

    @property
    def strategy(self):
        """Repayment strategy variant, or None for an unrecognised code"""
        from .utils import get_strategy
        return get_strategy(self.loan_strategy)

    @property
    def is_closed(self):
        return self.status in self.CLOSED_STATUSES

    @property
    def total_scheduled(self):
        """Sum of all installment amounts"""
        total = self.installments.aggregate(total=Sum('amount'))['total']
        return Decimal(total or 0)

    @property
    def total_paid(self):
        """Sum of everything collected against this loan"""
        total = self.installments.aggregate(total=Sum('paid_amount'))['total']
        return Decimal(total or 0)

    @property
    def total_due(self):
        """Outstanding balance across all installments"""
        total = self.installments.aggregate(total=Sum('due_amount'))['total']
        return Decimal(total or 0)

    @property
    def formatted_amount(self):
        return format_money(self.amount)

    @classmethod
    def get_active_loans(cls):
        """Get all active loans"""
        return cls.objects.filter(status='active')

    def __str__(self):
        return f"Loan #{self.loan_number} - {self.borrower.name} ({format_money(self.amount)})"

    class Meta:
        verbose_name = 'Loan'
        verbose_name_plural = 'Loans'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status', 'start_date']),
            models.Index(fields=['borrower', 'status']),
            models.Index(fields=['loan_strategy', 'status']),
        ]


# =============================================================================
# LOAN ITEM MODEL (COLLATERAL)
# =============================================================================

class LoanItem(BaseModel):
    """Gold or silver item pledged against a loan"""

    METAL_TYPES = (
        ('gold', 'Gold'),
        ('silver', 'Silver'),
    )

    loan = models.ForeignKey(
        Loan,
        on_delete=models.CASCADE,
        related_name='items'
    )

    metal_type = models.CharField(
        "Metal Type",
        max_length=10,
        choices=METAL_TYPES
    )

    item_name = models.CharField(
        "Item Name",
        max_length=200
    )

    metal_weight = models.DecimalField(
        "Metal Weight (g)",
        max_digits=10,
        decimal_places=3,
        validators=[MinValueValidator(Decimal('0.001'))]
    )

    purity = models.DecimalField(
        "Purity (%)",
        max_digits=5,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01')), MaxValueValidator(Decimal('100'))]
    )

    net_weight = models.DecimalField(
        "Net Weight (g)",
        max_digits=10,
        decimal_places=3,
        default=Decimal('0.000'),
        help_text="Metal weight adjusted for purity"
    )

    notes = models.TextField(
        "Notes",
        null=True,
        blank=True
    )

    def save(self, *args, **kwargs):
        """Derive net weight from weight and purity"""
        from .utils import calculate_net_weight
        self.net_weight = calculate_net_weight(self.metal_weight, self.purity)
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.get_metal_type_display()} {self.item_name} ({self.net_weight} g)"

    class Meta:
        verbose_name = 'Loan Item'
        verbose_name_plural = 'Loan Items'
        ordering = ['created_at']


# =============================================================================
# INSTALLMENT MODEL
# =============================================================================

class Installment(BaseModel):
    """One scheduled due payment on a loan"""

    STATUS_CHOICES = (
        ('upcoming', 'Upcoming'),
        ('due_soon', 'Due Soon'),
        ('collected', 'Collected'),
    )

    loan = models.ForeignKey(
        Loan,
        on_delete=models.CASCADE,
        related_name='installments',
        help_text="Loan this installment is for"
    )

    due_date = models.DateField(
        "Due Date",
        db_index=True
    )

    amount = models.DecimalField(
        "Scheduled Amount",
        max_digits=12,
        decimal_places=2
    )

    status = models.CharField(
        "Status",
        max_length=15,
        choices=STATUS_CHOICES,
        default='upcoming',
        db_index=True
    )

    paid_amount = models.DecimalField(
        "Paid Amount",
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00'),
        help_text="Cumulative amount collected"
    )

    due_amount = models.DecimalField(
        "Due Amount",
        max_digits=12,
        decimal_places=2,
        null=True,
        blank=True,
        help_text="Outstanding balance on this installment"
    )

    paid_date = models.DateField(
        "Last Paid Date",
        null=True,
        blank=True
    )

    payment_method = models.CharField(
        "Last Payment Method",
        max_length=20,
        choices=PAYMENT_METHODS,
        null=True,
        blank=True
    )

    notes = models.TextField(
        "Notes",
        null=True,
        blank=True
    )

    def save(self, *args, **kwargs):
        """Initialise the outstanding balance for new installments"""
        if self.due_amount is None:
            self.due_amount = max(self.amount - (self.paid_amount or Decimal('0.00')), Decimal('0.00'))
        super().save(*args, **kwargs)

    @property
    def is_collected(self):
        return self.status == 'collected'

    def is_overdue(self, today=None):
        """Due strictly before today and not collected"""
        today = today or get_today()
        return self.due_date < today and not self.is_collected

    def days_overdue(self, today=None):
        from .utils import calculate_days_overdue
        return calculate_days_overdue(self.due_date, today or get_today())

    @property
    def formatted_amount(self):
        return format_money(self.amount)

    @property
    def formatted_due_amount(self):
        return format_money(self.due_amount)

    def __str__(self):
        return f"Installment for {self.loan.loan_number} - Due: {self.due_date} ({self.amount})"

    class Meta:
        verbose_name = 'Installment'
        verbose_name_plural = 'Installments'
        ordering = ['due_date', 'created_at']
        indexes = [
            models.Index(fields=['loan', 'due_date']),
            models.Index(fields=['due_date', 'status']),
        ]


# =============================================================================
# PAYMENT TRANSACTION MODEL
# =============================================================================

class PaymentTransaction(BaseModel):
    """One money-collection event recorded against an installment"""

    installment = models.ForeignKey(
        Installment,
        on_delete=models.CASCADE,
        related_name='transactions'
    )

    amount = models.DecimalField(
        "Amount",
        max_digits=12,
        decimal_places=2,
        help_text="Amount collected in this transaction"
    )

    paid_date = models.DateField(
        "Paid Date"
    )

    payment_method = models.CharField(
        "Payment Method",
        max_length=20,
        choices=PAYMENT_METHODS,
        null=True,
        blank=True
    )

    notes = models.TextField(
        "Notes",
        null=True,
        blank=True
    )

    @property
    def formatted_amount(self):
        return format_money(self.amount)

    def __str__(self):
        return f"Transaction {self.amount} on {self.paid_date} for installment {self.installment_id}"

    class Meta:
        verbose_name = 'Payment Transaction'
        verbose_name_plural = 'Payment Transactions'
        ordering = ['-paid_date', '-created_at']
        indexes = [
            models.Index(fields=['installment', 'paid_date']),
        ]
