"""
Appointments Domain

Seat reservation against slot capacity (ReservationService) and the
appointment status lifecycle. Payment driven transitions live in billing.
"""
