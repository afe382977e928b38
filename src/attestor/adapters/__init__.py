"""Adapters connecting the domain to storage and the ledger API."""
