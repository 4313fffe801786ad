"""
Webhook ingestion and asynchronous activity enrichment.
"""
