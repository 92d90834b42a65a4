"""Local on-disk cache of downloaded genome sequences and their metadata.

Each cached genome is stored as two files in the cache directory, named after its accession:
``<accession>.fna`` holding the raw sequence bytes and ``<accession>.json`` holding its metadata.
Both are written atomically and the metadata file is written last, so a genome is completely cached
exactly when its metadata file exists.
"""

import os
import time
import logging
from pathlib import Path
from typing import Optional, Tuple, List

from ahsp.genome import GenomeMetadata
from ahsp.errors import FileIOError, NotFoundError, InvalidParametersError, SerializationError
from ahsp.io.util import FilePath, atomic_write
import ahsp.io.json as ajson


_LOG = logging.getLogger(__name__)

SEQ_SUFFIX = '.fna'
META_SUFFIX = '.json'

_SECONDS_PER_DAY = 24 * 60 * 60


def check_accession(accession: str) -> str:
	"""Check an accession is usable as a file name.

	Raises
	------
	InvalidParametersError
	"""
	if not isinstance(accession, str) or not accession.strip():
		raise InvalidParametersError('Accession must be a non-empty string')
	if accession in ('.', '..') or '/' in accession or '\\' in accession or os.sep in accession:
		raise InvalidParametersError(f'Invalid accession {accession!r}')
	return accession


class GenomeCache:
	"""Cache of genome sequences and metadata in a local directory.

	Safe to use from multiple threads and processes. Concurrent writes of the same accession each
	produce complete files and the last one wins.

	Attributes
	----------
	directory
		Cache directory.
	max_age_days
		Entries older than this many days are treated as missing. None means entries never expire.
	"""
	directory: Path
	max_age_days: Optional[float]

	def __init__(self, directory: FilePath, max_age_days: Optional[float] = None, create: bool = True):
		self.directory = Path(directory)
		if max_age_days is not None and max_age_days < 0:
			raise InvalidParametersError(f'max_age_days must be non-negative, got {max_age_days}')
		self.max_age_days = max_age_days

		if create:
			try:
				self.directory.mkdir(parents=True, exist_ok=True)
			except OSError as exc:
				raise FileIOError(f'Could not create cache directory {self.directory}: {exc}') from exc

	def __repr__(self):
		return f'<{type(self).__name__} {self.directory}>'

	def seq_path(self, accession: str) -> Path:
		return self.directory / (check_accession(accession) + SEQ_SUFFIX)

	def meta_path(self, accession: str) -> Path:
		return self.directory / (check_accession(accession) + META_SUFFIX)

	def is_expired(self, accession: str) -> bool:
		"""Check whether a cached entry is older than :attr:`max_age_days`."""
		if self.max_age_days is None:
			return False
		try:
			mtime = self.meta_path(accession).stat().st_mtime
		except FileNotFoundError:
			return False
		return time.time() - mtime > self.max_age_days * _SECONDS_PER_DAY

	def has(self, accession: str) -> bool:
		"""Check whether a complete, unexpired entry exists for the accession."""
		return self.meta_path(accession).is_file() \
			and self.seq_path(accession).is_file() \
			and not self.is_expired(accession)

	def __contains__(self, accession):
		return self.has(accession)

	def read_metadata(self, accession: str) -> GenomeMetadata:
		"""Read the metadata of a cached genome.

		Raises
		------
		NotFoundError
			If the accession is not cached.
		FileIOError
			If the file could not be read or parsed.
		"""
		path = self.meta_path(accession)
		try:
			with open(path) as f:
				return ajson.load(f, GenomeMetadata)
		except FileNotFoundError:
			raise NotFoundError(f'Accession {accession} not in cache') from None
		except (OSError, ValueError, KeyError, TypeError) as exc:
			raise FileIOError(f'Error reading cached metadata {path}: {exc}') from exc

	def read(self, accession: str) -> Tuple[bytes, GenomeMetadata]:
		"""Read a cached genome.

		Returns
		-------
		Tuple[bytes, GenomeMetadata]
			Sequence and metadata.

		Raises
		------
		NotFoundError
			If the accession is not cached or its entry is expired.
		FileIOError
			If the files could not be read.
		"""
		if self.is_expired(accession):
			raise NotFoundError(f'Cache entry for {accession} is expired')

		metadata = self.read_metadata(accession)

		path = self.seq_path(accession)
		try:
			seq = path.read_bytes()
		except FileNotFoundError:
			raise NotFoundError(f'Sequence file for {accession} missing from cache') from None
		except OSError as exc:
			raise FileIOError(f'Error reading cached sequence {path}: {exc}') from exc

		return seq, metadata

	def get(self, accession: str) -> Optional[Tuple[bytes, GenomeMetadata]]:
		"""Like :meth:`read` but return None if the entry is missing or expired."""
		try:
			return self.read(accession)
		except NotFoundError:
			return None

	def write(self, accession: str, seq: bytes, metadata: GenomeMetadata):
		"""Store a genome in the cache, replacing any existing entry.

		Raises
		------
		SerializationError
			If the metadata can't be encoded as JSON. Nothing is written in this case.
		FileIOError
		"""
		seq_path = self.seq_path(accession)
		meta_path = self.meta_path(accession)

		try:
			meta_json = ajson.dumps(metadata)
		except (TypeError, ValueError) as exc:
			raise SerializationError(f'Failed to encode metadata of {accession}: {exc}') from exc

		try:
			self.directory.mkdir(parents=True, exist_ok=True)
			atomic_write(seq_path, bytes(seq))
			atomic_write(meta_path, meta_json)
		except OSError as exc:
			raise FileIOError(f'Error writing {accession} to cache: {exc}') from exc

		_LOG.debug('Cached %s (%d bytes)', accession, len(seq))

	def remove(self, accession: str) -> bool:
		"""Remove an entry. Returns False if it did not exist."""
		removed = False
		# Metadata first, so the entry is never seen as complete while being removed
		for path in [self.meta_path(accession), self.seq_path(accession)]:
			try:
				path.unlink()
				removed = True
			except FileNotFoundError:
				pass
			except OSError as exc:
				raise FileIOError(f'Could not remove {path}: {exc}') from exc
		return removed

	def accessions(self) -> List[str]:
		"""Get the accessions of all complete entries (including expired ones), sorted."""
		if not self.directory.is_dir():
			return []
		out = []
		for path in self.directory.glob('*' + META_SUFFIX):
			acc = path.name[:-len(META_SUFFIX)]
			if (self.directory / (acc + SEQ_SUFFIX)).is_file():
				out.append(acc)
		return sorted(out)

	def clear_expired(self) -> int:
		"""Remove all expired entries, returning the number removed."""
		n = 0
		for acc in self.accessions():
			if self.is_expired(acc):
				self.remove(acc)
				n += 1
		if n:
			_LOG.info('Removed %d expired entries from genome cache', n)
		return n
