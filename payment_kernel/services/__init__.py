"""Ledger services: the imperative shell around the pure domain core."""
