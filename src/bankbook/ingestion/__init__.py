"""
Ingestion: scrape accounts and store new transactions as pending.
"""

from .engine import IngestionEngine, IngestionRunSummary

__all__ = ["IngestionEngine", "IngestionRunSummary"]
