"""Expense tracking backend with a conversational, tool-using assistant."""

__version__ = "0.1.0"
