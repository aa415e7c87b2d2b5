"""Service layer helpers (settings, result ledger, events)."""
