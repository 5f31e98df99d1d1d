"""Ledger write side: balance mutations and entity resolution."""

from finance_tracker.ledger.entities import EntityResolver
from finance_tracker.ledger.mutator import BalanceMutator

__all__ = ["BalanceMutator", "EntityResolver"]
