"""
Scheduling Domain

Appointment slots: public availability queries and admin slot management.
The seat counter on each slot is only moved by the appointments domain
through SlotRepository.claim_seat / release_seat.
"""
