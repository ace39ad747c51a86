"""Keeping local checkouts in sync with their remotes."""
