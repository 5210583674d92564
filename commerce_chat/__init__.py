"""Conversational shopping assistant for a Vietnamese storefront."""

__version__ = "0.1.0"
