"""
Settlement services.

Modules:
- fee_calculator: PaymentBreakdown and application fee math (pure)
- provisioning: MerchantAccountProvisioner, idempotent account creation
- account_sync: AccountSyncService, refreshes accounts from Stripe
- checkout: PaymentSessionService, destination-charge checkout sessions
- refunds: RefundOrchestrator, reversing refunds with platform fallback
- notifications: NotificationGateway and its email implementation

Every service takes the Stripe adapter (and the notification gateway where
needed) as a constructor argument:

    from payments.adapters import get_stripe_adapter
    from payments.services.checkout import PaymentSessionService

    handle = PaymentSessionService(get_stripe_adapter()).create_session(request)
"""
