"""Level catalog and student progress service."""

__version__ = "0.1.0"
