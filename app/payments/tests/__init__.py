"""
Tests for payments app.

This package contains test modules for:
- test_fee_calculator.py: PaymentBreakdown math
- test_models.py: Settlement model tests
- test_provisioning.py, test_account_sync.py: Merchant account lifecycle
- test_checkout.py, test_refunds.py: Charge and refund flows
- test_views.py: API endpoint tests

Webhook and adapter tests live beside their packages.

Usage:
    pytest payments/tests/
    pytest payments/tests/test_refunds.py
"""
