"""Command line interface for deckhand."""
