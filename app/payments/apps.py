"""
Payments app configuration.

Builds the process-wide Stripe adapter once the app registry is ready.
"""

from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    """Configuration for the payments application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
    verbose_name = "Payments"

    def ready(self) -> None:
        from payments.adapters import StripeAdapter, set_stripe_adapter

        set_stripe_adapter(StripeAdapter.from_settings())
