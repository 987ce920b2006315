"""
Billing Domain

Hosted checkout (Dodo Payments), the payment webhook, and reconciliation of
captured charges into payments, scheduled appointments and product orders.
"""
