"""Synthetic MusicXML scores for tests."""
