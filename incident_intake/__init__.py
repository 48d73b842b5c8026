"""Conversational incident intake service."""
