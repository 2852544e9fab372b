"""ShowImages - replace thumbnails with their full-resolution originals."""

__version__ = "0.1.0"
