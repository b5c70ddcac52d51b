"""Sprout: flashcards embedded in Markdown notes, scheduled from a JSON store."""
