"""Service layer: booking rules, ledger moves and schedule computation."""
