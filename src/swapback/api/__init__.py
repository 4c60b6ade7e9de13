"""Read-only HTTP API over the swap ledger."""
