"""Staged LLM analysis of sales spreadsheets."""

__version__ = "0.1.0"
