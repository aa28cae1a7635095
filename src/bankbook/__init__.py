"""
bankbook: bank transaction ingestion and classification.

Pipeline:
1. Scrape configured bank/credit-card accounts
2. Deduplicate by content hash and store as pending transactions
3. Classify through invoice -> client ledger -> learned rule layers
4. Resolve leftovers through a manual chat flow that teaches new rules
"""

__version__ = "0.1.0"
