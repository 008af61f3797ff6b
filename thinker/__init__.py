"""Clone and sync RethinkDB databases."""

__version__ = "0.3.0"
