"""Class booking backend: reservations, settlement and role-gated routes."""
