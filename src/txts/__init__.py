"""txts - fuzzy search for Apple Messages."""

__version__ = "1.0.0"
