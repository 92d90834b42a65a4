"""Embedded transactional store of signatures indexed by id and taxonomy term."""

import logging
import threading
from pathlib import Path
from typing import Optional, List, Iterator, ContextManager
from contextlib import contextmanager

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session

from .models import metadata, SignatureRow, TaxonomyEntry, DbInfo
from .record import encode_signature, decode_signature, CURRENT_FMT_VERSION
from .sqla import sqlite_engine
from ahsp.sigs.base import MultiResolutionSignature
from ahsp.kmers import HASH_FAMILY
from ahsp.genome import check_term
from ahsp.errors import StorageError, NotFoundError, InvalidParametersError, SerializationError
from ahsp.io.util import FilePath


_LOG = logging.getLogger(__name__)


#: Keys of :class:`ahsp.db.models.DbInfo` rows recording the hash function signatures were built with.
INFO_HASH_FAMILY = 'hash_family'
INFO_HASH_SEED = 'hash_seed'


class SignatureDatabase:
	"""Persistent store of :class:`ahsp.sigs.MultiResolutionSignature` objects.

	Signatures are stored in an SQLite database keyed by id, along with a secondary index mapping
	each term of the genome's lineage to the ids of signatures containing it. Every modification
	runs in a single transaction, so the two indices are always consistent.

	Instances may be shared between threads. Writes are serialized within the process, and a
	concurrent reader sees the state either before or after a write but never in between.

	Use :meth:`open` to create instances. Instances can be used as context managers, which close
	the database on exit.

	Attributes
	----------
	path
		Path to the database file, None for an in-memory database.
	engine
		SQLAlchemy engine.
	"""
	path: Optional[Path]
	engine: sa.engine.Engine

	def __init__(self, engine: sa.engine.Engine, path: Optional[Path] = None):
		self.engine = engine
		self.path = path
		self._Session = sessionmaker(engine, expire_on_commit=False)
		self._write_lock = threading.RLock()
		# A single shared connection can't isolate readers from writers
		self._read_lock = self._write_lock if path is None else None
		self._closed = False

	@classmethod
	def open(cls, path: Optional[FilePath] = None, *, create: bool = True) -> 'SignatureDatabase':
		"""Open a database file, creating it if needed.

		Parameters
		----------
		path
			Path to SQLite database file. If None, create a private in-memory database.
		create
			Create the file (and its parent directory) if it does not exist. If False and the file
			does not exist, raise :exc:`ahsp.errors.StorageError`.

		Raises
		------
		StorageError
		"""
		if path is not None:
			path = Path(path)
			if not path.exists():
				if not create:
					raise StorageError(f'Database file {path} does not exist')
				try:
					path.parent.mkdir(parents=True, exist_ok=True)
				except OSError as exc:
					raise StorageError(f'Could not create directory for database {path}: {exc}') from exc

		try:
			engine = sqlite_engine(path)
			metadata.create_all(engine)
		except SQLAlchemyError as exc:
			raise StorageError(f'Could not open database {path or ":memory:"}: {exc}') from exc

		_LOG.debug('Opened signature database %s', path or ':memory:')
		return cls(engine, path)

	def __repr__(self):
		return f'<{type(self).__name__} {self.path or ":memory:"}>'

	def __enter__(self):
		return self

	def __exit__(self, *args):
		self.close()

	def __len__(self):
		return self.count()

	@property
	def closed(self) -> bool:
		return self._closed

	def close(self):
		"""Release all database connections. Does nothing if already closed."""
		if not self._closed:
			self.engine.dispose()
			self._closed = True

	@contextmanager
	def _storage_errors(self, action: str) -> Iterator[None]:
		try:
			yield
		except SQLAlchemyError as exc:
			raise StorageError(f'Storage error while {action}: {exc}') from exc

	@contextmanager
	def _reading(self, action: str) -> ContextManager[Session]:
		if self._closed:
			raise StorageError('Database is closed')
		with self._storage_errors(action):
			if self._read_lock is None:
				with self._Session.begin() as session:
					yield session
			else:
				with self._read_lock, self._Session.begin() as session:
					yield session

	@contextmanager
	def _writing(self, action: str) -> ContextManager[Session]:
		if self._closed:
			raise StorageError('Database is closed')
		with self._storage_errors(action), self._write_lock, self._Session.begin() as session:
			yield session

	def _check_hash_params(self, session: Session, sig: MultiResolutionSignature):
		"""Check signature was built with the database's hash function, recording it if this is the first."""
		seeds = {sig.macro.spec.hash_seed, sig.meso.spec.hash_seed}
		if len(seeds) != 1:
			raise InvalidParametersError(f'Signature {sig.id} sketches use different hash seeds')
		seed = int(seeds.pop())

		info = {row.key: row for row in session.query(DbInfo).filter(DbInfo.key.in_([INFO_HASH_FAMILY, INFO_HASH_SEED]))}

		if not info:
			session.add(DbInfo(key=INFO_HASH_FAMILY, value=HASH_FAMILY))
			session.add(DbInfo(key=INFO_HASH_SEED, value=seed))
			return

		family = info[INFO_HASH_FAMILY].value if INFO_HASH_FAMILY in info else None
		db_seed = info[INFO_HASH_SEED].value if INFO_HASH_SEED in info else None

		if family != HASH_FAMILY:
			raise InvalidParametersError(f'Database uses hash family {family!r}, expected {HASH_FAMILY!r}')
		if db_seed != seed:
			raise InvalidParametersError(
				f'Signature {sig.id} built with hash seed {seed}, database uses hash seed {db_seed}'
			)

	def hash_seed(self) -> Optional[int]:
		"""Get the hash seed of signatures in the database, or None if no signature was ever added."""
		with self._reading('reading database info') as session:
			row = session.get(DbInfo, INFO_HASH_SEED)
			return None if row is None else row.value

	def get_info(self, key: str, default=None):
		"""Get a JSON value stored with :meth:`set_info`."""
		with self._reading(f'reading database info {key!r}') as session:
			row = session.get(DbInfo, key)
			return default if row is None else row.value

	def set_info(self, key: str, value):
		"""Store a JSON-compatible value under a key in the database info table."""
		if key in (INFO_HASH_FAMILY, INFO_HASH_SEED):
			raise ValueError(f'{key!r} is set automatically when adding signatures')
		with self._writing(f'writing database info {key!r}') as session:
			session.merge(DbInfo(key=key, value=value))

	def add_signature(self, sig: MultiResolutionSignature) -> str:
		"""Add a signature, replacing any existing signature with the same id.

		The signature's entries in the taxonomy index are replaced in the same transaction.

		Returns
		-------
		str
			Id of the signature.

		Raises
		------
		InvalidParametersError
			If the signature's hash seed differs from that of the signatures already in the database.
		SerializationError
			If the signature can't be encoded.
		StorageError
		"""
		data = encode_signature(sig)
		terms = sig.metadata.terms

		with self._writing(f'adding signature {sig.id}') as session:
			self._check_hash_params(session, sig)

			row = session.get(SignatureRow, sig.id)
			if row is None:
				session.add(SignatureRow(id=sig.id, format_version=CURRENT_FMT_VERSION, data=data))
				replaced = False
			else:
				row.format_version = CURRENT_FMT_VERSION
				row.data = data
				replaced = True
			session.flush()

			session.execute(sa.delete(TaxonomyEntry).where(TaxonomyEntry.signature_id == sig.id))
			session.add_all([TaxonomyEntry(term=term, signature_id=sig.id) for term in terms])

		_LOG.debug('%s signature %s', 'Replaced' if replaced else 'Added', sig.id)
		return sig.id

	def get_signature(self, id: str) -> MultiResolutionSignature:
		"""Get signature by id.

		Raises
		------
		NotFoundError
			If no signature with the id exists.
		SerializationError
			If the stored record could not be decoded.
		"""
		with self._reading(f'reading signature {id}') as session:
			row = session.get(SignatureRow, id)
			if row is None:
				raise NotFoundError(f'No signature with id {id!r}')
			data = row.data

		return decode_signature(data)

	def has_signature(self, id: str) -> bool:
		"""Check if a signature with the given id exists."""
		with self._reading(f'reading signature {id}') as session:
			return session.query(SignatureRow.id).filter_by(id=id).first() is not None

	def list_ids(self) -> List[str]:
		"""Get ids of all signatures, in sorted order."""
		with self._reading('listing signatures') as session:
			return [id_ for id_, in session.query(SignatureRow.id).order_by(SignatureRow.id)]

	def count(self) -> int:
		"""Get the number of signatures in the database."""
		with self._reading('counting signatures') as session:
			return session.query(sa.func.count(SignatureRow.id)).scalar()

	def is_empty(self) -> bool:
		return self.count() == 0

	def search_ids_by_taxonomy(self, term: str) -> List[str]:
		"""Get ids of all signatures whose lineage contains the given term (exact match), in sorted order.

		Raises
		------
		TaxonomyError
			If ``term`` is blank.
		"""
		term = check_term(term)
		with self._reading(f'searching for {term!r}') as session:
			q = session.query(TaxonomyEntry.signature_id) \
				.filter(TaxonomyEntry.term == term) \
				.order_by(TaxonomyEntry.signature_id)
			return [id_ for id_, in q]

	def search_by_taxonomy(self, term: str) -> List[MultiResolutionSignature]:
		"""Get all signatures whose lineage contains the given term (exact match).

		Returns an empty list if there are no matches. Signatures are ordered by id.

		Raises
		------
		TaxonomyError
			If ``term`` is blank.
		SerializationError
			If a stored record could not be decoded.
		"""
		term = check_term(term)
		with self._reading(f'searching for {term!r}') as session:
			q = session.query(SignatureRow.data) \
				.join(TaxonomyEntry, TaxonomyEntry.signature_id == SignatureRow.id) \
				.filter(TaxonomyEntry.term == term) \
				.order_by(SignatureRow.id)
			records = [data for data, in q]

		return [decode_signature(data) for data in records]

	def iter_signatures(self, errors: str = 'raise') -> Iterator[MultiResolutionSignature]:
		"""Iterate over all signatures in order of id.

		Records are read in a single transaction before decoding starts.

		Parameters
		----------
		errors
			What to do when a record can't be decoded. ``'raise'`` raises
			:exc:`ahsp.errors.SerializationError`, ``'skip'`` logs a warning and skips it.
		"""
		if errors not in ('raise', 'skip'):
			raise ValueError(f'errors must be "raise" or "skip", got {errors!r}')

		with self._reading('reading signatures') as session:
			records = session.query(SignatureRow.id, SignatureRow.data).order_by(SignatureRow.id).all()

		for id_, data in records:
			try:
				yield decode_signature(data)
			except SerializationError as exc:
				if errors == 'raise':
					raise
				_LOG.warning('Skipping undecodable signature record %s: %s', id_, exc)

	def get_all_signatures(self, errors: str = 'raise') -> List[MultiResolutionSignature]:
		"""Get all signatures in order of id.

		See :meth:`iter_signatures` for the ``errors`` argument.
		"""
		return list(self.iter_signatures(errors))

	def remove_signature(self, id: str):
		"""Remove a signature along with its taxonomy index entries.

		Raises
		------
		NotFoundError
			If no signature with the id exists.
		"""
		with self._writing(f'removing signature {id}') as session:
			session.execute(sa.delete(TaxonomyEntry).where(TaxonomyEntry.signature_id == id))
			result = session.execute(sa.delete(SignatureRow).where(SignatureRow.id == id))
			if result.rowcount == 0:
				raise NotFoundError(f'No signature with id {id!r}')

		_LOG.debug('Removed signature %s', id)
