"""Taxonomist - budget-aware, multi-pass LLM categorization of text records."""

__version__ = "0.1.0"
