"""Airflow operators for technology journal loading."""

from techjournal.operators.load_operator import TechJournalLoadOperator

__all__ = [
    "TechJournalLoadOperator",
]
