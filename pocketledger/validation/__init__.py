"""Validation package."""

from pocketledger.validation.validator import BudgetHierarchyValidator

__all__ = ["BudgetHierarchyValidator"]
