"""
URL configuration for the loanbook project.

The loan core exposes services rather than views; the HTTP surface is
limited to the Django admin.
"""

from django.contrib import admin
from django.urls import path

urlpatterns = [
    # Django admin
    path('admin/', admin.site.urls),
]
