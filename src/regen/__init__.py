"""regen - keeps data repositories in sync and regenerates pickle files."""

__version__ = "0.1.0"
