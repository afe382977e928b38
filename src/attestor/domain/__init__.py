"""Evidence attestation domain: registry, merge engine, reconciliation, queries."""
