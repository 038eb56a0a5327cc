"""Example QuoteProvider implementations."""
