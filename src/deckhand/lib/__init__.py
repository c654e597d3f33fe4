"""Shared utilities for deckhand: errors and logging setup."""
