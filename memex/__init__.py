"""memex - local-first knowledge memory with hybrid recall."""

__version__ = "0.1.0"
