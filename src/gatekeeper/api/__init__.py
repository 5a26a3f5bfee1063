"""HTTP API for classification, validation and ledger queries."""
