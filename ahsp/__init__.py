"""Multi-resolution genomic signatures and a taxonomy-indexed reference database."""

__version__ = '0.1.0'
