"""Persistent storage of signatures with a taxonomy index."""

from .sigdb import SignatureDatabase
from .record import encode_signature, decode_signature, CURRENT_FMT_VERSION
