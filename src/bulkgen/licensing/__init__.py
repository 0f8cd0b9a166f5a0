"""License records, token usage, cost ledger and audit trail."""
