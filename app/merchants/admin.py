"""
Merchant admin configuration.
"""

from django.contrib import admin

from merchants.models import Merchant


@admin.register(Merchant)
class MerchantAdmin(admin.ModelAdmin):
    """
    Admin configuration for Merchant profiles.

    Profile completeness drives what account provisioning can prefill.
    """

    list_display = [
        "id",
        "name",
        "business_type",
        "country",
        "contact_email",
        "created_at",
    ]
    list_filter = ["business_type", "country"]
    search_fields = ["id", "name", "legal_name", "contact_email", "tax_id"]
    readonly_fields = ["id", "created_at", "updated_at"]
    ordering = ["name"]
