"""Pydantic models for deckhand configuration, releases and health results."""
