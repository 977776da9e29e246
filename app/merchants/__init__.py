"""
Merchants app: the agencies whose activities are sold on the platform.

The settlement subsystem reads merchant profiles to prefill connected
accounts and to address payout notifications. It never writes them.
"""
