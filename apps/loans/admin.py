# loans/admin.py

from django.contrib import admin

from .models import Loan, LoanItem, Installment, PaymentTransaction


class LoanItemInline(admin.TabularInline):
    model = LoanItem
    extra = 0
    fields = ['metal_type', 'item_name', 'metal_weight', 'purity', 'net_weight', 'notes']
    readonly_fields = ['net_weight']


class InstallmentInline(admin.TabularInline):
    model = Installment
    extra = 0
    fields = ['due_date', 'amount', 'status', 'paid_amount', 'due_amount', 'paid_date', 'payment_method']
    readonly_fields = ['status', 'paid_amount', 'due_amount', 'paid_date', 'payment_method']
    ordering = ['due_date']


class PaymentTransactionInline(admin.TabularInline):
    model = PaymentTransaction
    extra = 0
    fields = ['amount', 'paid_date', 'payment_method', 'notes']


# =============================================================================
# LOAN ADMIN
# =============================================================================

@admin.register(Loan)
class LoanAdmin(admin.ModelAdmin):
    inlines = [LoanItemInline, InstallmentInline]

    list_display = [
        'loan_number',
        'borrower',
        'amount',
        'loan_strategy',
        'start_date',
        'status',
        'completed_date',
    ]
    list_filter = ['loan_strategy', 'status', 'start_date']
    search_fields = ['loan_number', 'borrower__name', 'borrower__phone', 'guarantor_name']
    readonly_fields = ['loan_number', 'completed_date', 'created_at', 'updated_at']
    raw_id_fields = ['borrower']

    fieldsets = (
        ('Loan', {
            'fields': ('loan_number', 'borrower', 'amount', 'loan_strategy', 'start_date', 'status', 'completed_date')
        }),
        ('Terms', {
            'fields': ('tenure', 'custom_emi_amount', 'flat_monthly_amount')
        }),
        ('Guarantor', {
            'fields': ('guarantor_name', 'guarantor_phone', 'guarantor_address'),
            'classes': ('collapse',)
        }),
        ('Notes', {
            'fields': ('notes', 'change_reason', 'created_at', 'updated_at')
        }),
    )

    def get_readonly_fields(self, request, obj=None):
        # Strategy is fixed once the schedule exists
        if obj is not None:
            return self.readonly_fields + ['loan_strategy']
        return self.readonly_fields


# =============================================================================
# INSTALLMENT ADMIN
# =============================================================================

@admin.register(Installment)
class InstallmentAdmin(admin.ModelAdmin):
    inlines = [PaymentTransactionInline]

    list_display = ['loan', 'due_date', 'amount', 'status', 'paid_amount', 'due_amount', 'paid_date']
    list_filter = ['status', 'due_date', 'loan__loan_strategy']
    search_fields = ['loan__loan_number', 'loan__borrower__name']
    date_hierarchy = 'due_date'
    raw_id_fields = ['loan']


@admin.register(PaymentTransaction)
class PaymentTransactionAdmin(admin.ModelAdmin):
    list_display = ['installment', 'amount', 'paid_date', 'payment_method']
    list_filter = ['payment_method', 'paid_date']
    search_fields = ['installment__loan__loan_number', 'notes']
    raw_id_fields = ['installment']
