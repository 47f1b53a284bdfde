"""RosterMerge - cross-source entity resolution for HR data imports."""

__version__ = "0.1.0"
