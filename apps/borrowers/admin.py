# borrowers/admin.py

from django.contrib import admin

from .models import Borrower


@admin.register(Borrower)
class BorrowerAdmin(admin.ModelAdmin):
    list_display = ['name', 'phone', 'document_type', 'guarantor_name', 'created_at']
    list_filter = ['document_type', 'created_at']
    search_fields = ['name', 'phone', 'document_number', 'guarantor_name']
    readonly_fields = ['created_at', 'updated_at']
