"""Background workers: outbox dispatch, export expiry and ledger retention."""
