"""Retrieval-augmented chat package."""

from .config import BudgetConfig, RetrievalConfig, SummarizerConfig

__all__ = ["BudgetConfig", "RetrievalConfig", "SummarizerConfig"]
