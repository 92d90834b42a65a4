"""Exception types raised by the package.

All exceptions derive from :class:`.AHSPError`. Where a failure originates in a lower-level
library the original exception is attached as ``__cause__`` (``raise ... from exc``).
"""

from typing import Optional, Sequence, Any


class AHSPError(Exception):
	"""Base class for all errors raised by this package."""

	def __init__(self, message: str, *args):
		super().__init__(message, *args)
		self.message = message

	def __str__(self):
		return self.message


class FileIOError(AHSPError):
	"""Failure reading or writing local files (genome cache, sequence files)."""


class NetworkError(AHSPError):
	"""Genome provider unreachable or request timed out.

	These are transient, callers may retry the operation.
	"""
	retryable = True


class ProviderProtocolError(AHSPError):
	"""Malformed or unexpected response from the genome provider."""


class StorageError(AHSPError):
	"""Failure of the embedded storage engine."""


class SerializationError(AHSPError):
	"""Failure encoding or decoding a stored signature record."""


class TaxonomyError(AHSPError):
	"""Lineage missing or malformed."""


class SignatureError(AHSPError):
	"""Failure constructing a signature from sequence data."""


class EmptySequenceError(SignatureError):
	"""Sequence is empty or contains no valid nucleotide codes."""


class NotFoundError(AHSPError):
	"""A requested signature id or accession does not exist."""


class InvalidParametersError(AHSPError, ValueError):
	"""Parameter values violate constraints (k-mer length, sketch size, thread count...)."""


class BatchError(AHSPError):
	"""Every item of a non-empty batch operation failed.

	Attributes
	----------
	results
		Per-item results of the failed operation.
	"""
	results: Sequence[Any]

	def __init__(self, message: str, results: Optional[Sequence[Any]] = None):
		super().__init__(message)
		self.results = [] if results is None else list(results)
