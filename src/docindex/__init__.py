"""docindex: full-text document indexing and search core."""

__version__ = "0.1.0"
