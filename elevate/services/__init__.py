"""
Shared services: job state, leases, ledger access, signing and messaging.
"""
