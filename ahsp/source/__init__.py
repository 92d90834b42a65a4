"""Providers of genome sequences and metadata."""

from .base import GenomeSource
from .ncbi import EntrezGenomeSource
