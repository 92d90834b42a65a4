"""AHSP command line interface."""

from .root import cli
from . import references
