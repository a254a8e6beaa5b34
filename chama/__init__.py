"""Chama contributions service: M-Pesa collection and ledger reconciliation."""
