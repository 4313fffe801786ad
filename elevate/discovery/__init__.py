"""
Discovery jobs: transactions, blocks and assets pulled from the ledger.
"""
