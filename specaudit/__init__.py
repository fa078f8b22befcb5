"""Analysis engine for structured design documents."""

__version__ = "0.1.0"
