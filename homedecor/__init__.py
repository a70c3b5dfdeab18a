"""Home decor redecoration pipeline."""

__version__ = "1.0.0"
