"""deckhand CLI commands."""
