"""Orchestrates downloading genomes, building their signatures and storing them."""

import os
import logging
from pathlib import Path
from typing import Optional, List, Sequence, Tuple, Union, Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed

from attr import attrs, attrib

from ahsp.sigs.calc import SignatureBuilder
from ahsp.db.sigdb import SignatureDatabase
from ahsp.cache import GenomeCache
from ahsp.source.base import GenomeSource
from ahsp.genome import GenomeMetadata, parse_lineage
from ahsp.seq import SequenceFile, join_seqs
from ahsp.kmers import SketchSpec, DEFAULT_HASH_SEED
from ahsp.errors import AHSPError, BatchError, InvalidParametersError, FileIOError, NotFoundError
from ahsp.io.util import FilePath
from ahsp.util.progress import get_progress


_LOG = logging.getLogger(__name__)


def _optional_path(value):
	return None if value is None else Path(value)


@attrs(frozen=True)
class ManagerConfig:
	"""Configuration of a :class:`.DatabaseManager`.

	Attributes
	----------
	db_path
		Path to signature database file. None for an in-memory database.
	cache_dir
		Directory to cache downloaded genomes in.
	macro_k
		K-mer length of the coarse sketch.
	meso_k
		K-mer length of the fine sketch.
	sketch_size
		Number of hashes in each sketch.
	threads
		Number of worker threads used for downloading and building.
	api_key
		NCBI API key.
	email
		Contact email sent with NCBI requests.
	hash_seed
		Seed of the k-mer hash function. Must match that of signatures already in the database.
	timeout
		Timeout of network requests in seconds.
	cache_max_age_days
		Cached genomes older than this are downloaded again. None means they never expire.

	Raises
	------
	InvalidParametersError
		On construction, if any value is out of range.
	"""
	db_path: Optional[Path] = attrib(converter=_optional_path)
	cache_dir: Path = attrib(converter=Path)
	macro_k: int = attrib(default=21)
	meso_k: int = attrib(default=11)
	sketch_size: int = attrib(default=1000)
	threads: int = attrib(default=4)
	api_key: Optional[str] = attrib(default=None)
	email: Optional[str] = attrib(default=None)
	hash_seed: int = attrib(default=DEFAULT_HASH_SEED)
	timeout: float = attrib(default=60.0)
	cache_max_age_days: Optional[float] = attrib(default=None)

	def __attrs_post_init__(self):
		SketchSpec(self.macro_k, self.sketch_size, self.hash_seed)
		SketchSpec(self.meso_k, self.sketch_size, self.hash_seed)
		if not isinstance(self.threads, int) or self.threads < 1:
			raise InvalidParametersError(f'Thread count must be at least 1, got {self.threads!r}')
		if self.timeout <= 0:
			raise InvalidParametersError(f'Timeout must be positive, got {self.timeout!r}')
		if self.cache_max_age_days is not None and self.cache_max_age_days < 0:
			raise InvalidParametersError(f'Cache max age must be non-negative, got {self.cache_max_age_days!r}')

	@classmethod
	def from_env(cls, **kw) -> 'ManagerConfig':
		"""Create from keyword arguments, with defaults for some values taken from environment variables.

		``db_path``, ``cache_dir``, ``api_key`` and ``email`` default to the ``AHSP_DB_PATH``,
		``AHSP_CACHE_DIR``, ``NCBI_API_KEY`` and ``NCBI_EMAIL`` variables.
		"""
		env = dict(
			db_path=os.environ.get('AHSP_DB_PATH', 'ahsp.db'),
			cache_dir=os.environ.get('AHSP_CACHE_DIR', 'genome_cache'),
			api_key=os.environ.get('NCBI_API_KEY'),
			email=os.environ.get('NCBI_EMAIL'),
		)
		for key, value in env.items():
			kw.setdefault(key, value)
		return cls(**kw)

	def builder(self) -> SignatureBuilder:
		"""Create a signature builder with these parameters."""
		return SignatureBuilder(self.macro_k, self.meso_k, self.sketch_size, self.hash_seed)


@attrs(frozen=True)
class ItemFailure:
	"""Failure processing a single genome in a batch operation.

	Attributes
	----------
	id
		Accession or signature id.
	stage
		Stage the failure occurred in: ``'fetch'``, ``'build'`` or ``'store'``.
	error
		The exception raised.
	"""
	id: str = attrib()
	stage: str = attrib()
	error: AHSPError = attrib()


@attrs()
class UpdateReport:
	"""Outcome of a batch operation which adds signatures to the database.

	Attributes
	----------
	requested
		Ids of all items in the batch.
	added
		Ids of signatures added (or replaced) in the database.
	skipped
		Ids skipped because they were already present.
	failed
		Items which could not be added.
	"""
	requested: List[str] = attrib(factory=list)
	added: List[str] = attrib(factory=list)
	skipped: List[str] = attrib(factory=list)
	failed: List[ItemFailure] = attrib(factory=list)

	@property
	def all_failed(self) -> bool:
		"""Whether the batch was non-empty and every item not skipped failed."""
		attempted = len(self.requested) - len(self.skipped)
		return attempted > 0 and len(self.failed) == attempted

	def check(self) -> 'UpdateReport':
		"""Raise :exc:`ahsp.errors.BatchError` if all items failed, otherwise return self."""
		if self.all_failed:
			raise BatchError(f'All {len(self.failed)} items failed', self.failed)
		return self


def _file_accession(path: Path) -> str:
	name = path.name
	for ext in ['.gz', '.fna', '.fasta', '.fa', '.ffn', '.fas']:
		if name.endswith(ext):
			name = name[:-len(ext)]
	return name


class DatabaseManager:
	"""Builds and maintains a signature database from a remote genome source.

	Holds an open :class:`ahsp.db.SignatureDatabase`, a :class:`ahsp.cache.GenomeCache` and a
	:class:`ahsp.source.GenomeSource`. Failures of individual genomes in batch operations are logged
	and recorded, they do not stop the remaining items from being processed.

	Instances can be used as context managers, which call :meth:`close` on exit.

	Parameters
	----------
	config
		Configuration, fixed for the lifetime of the instance.
	source
		Genome source. Defaults to an :class:`ahsp.source.EntrezGenomeSource` configured from
		``config``.
	database
		Already open database to use instead of opening ``config.db_path``. It is not closed by
		:meth:`close`.

	Raises
	------
	StorageError
		If the database could not be opened.
	FileIOError
		If the cache directory could not be created.
	InvalidParametersError
		If the database contains signatures built with a different hash seed.
	"""
	config: ManagerConfig
	db: SignatureDatabase
	cache: GenomeCache
	source: GenomeSource
	builder: SignatureBuilder

	def __init__(self,
	             config: ManagerConfig,
	             source: Optional[GenomeSource] = None,
	             database: Optional[SignatureDatabase] = None,
	             ):
		self.config = config
		self.builder = config.builder()

		if database is None:
			self.db = SignatureDatabase.open(config.db_path)
			self._owns_db = True
		else:
			self.db = database
			self._owns_db = False

		try:
			self.cache = GenomeCache(config.cache_dir, config.cache_max_age_days)

			seed = self.db.hash_seed()
			if seed is not None and seed != config.hash_seed:
				raise InvalidParametersError(
					f'Database signatures use hash seed {seed}, configuration has {config.hash_seed}'
				)

		except AHSPError:
			self.close()
			raise

		if source is None:
			from ahsp.source.ncbi import EntrezGenomeSource
			source = EntrezGenomeSource(api_key=config.api_key, email=config.email, timeout=config.timeout)
		self.source = source

	def __repr__(self):
		return f'<{type(self).__name__} db={self.db!r} cache={self.cache!r}>'

	def __enter__(self):
		return self

	def __exit__(self, *args):
		self.close()

	def close(self):
		if self._owns_db:
			self.db.close()

	def is_empty(self) -> bool:
		"""Check whether the database contains no signatures."""
		return self.db.is_empty()

	def _executor(self) -> ThreadPoolExecutor:
		return ThreadPoolExecutor(max_workers=self.config.threads)

	def _fetch_one(self, accession: str) -> Tuple[bytes, GenomeMetadata]:
		try:
			cached = self.cache.get(accession)
		except FileIOError as exc:
			_LOG.warning('Discarding unreadable cache entry for %s: %s', accession, exc)
			self.cache.remove(accession)
			cached = None

		if cached is not None:
			_LOG.debug('Using cached genome %s', accession)
			return cached

		seq, metadata = self.source.fetch(accession)
		self.cache.write(accession, seq, metadata)
		return seq, metadata

	def _fetch_many(self, accessions: Sequence[str], progress=None) -> List[Union[Tuple[bytes, GenomeMetadata], AHSPError]]:
		"""Fetch genomes through the cache concurrently.

		Returns a list in the same order as ``accessions`` containing either the sequence and
		metadata or the exception raised.
		"""
		results = [None] * len(accessions)
		if not accessions:
			return results

		future_to_index = dict()

		with self._executor() as executor, get_progress(progress, len(accessions), desc='Fetching') as meter:
			for i, acc in enumerate(accessions):
				future = executor.submit(self._fetch_one, acc)
				future_to_index[future] = i

			for future in as_completed(future_to_index):
				i = future_to_index[future]
				try:
					results[i] = future.result()
				except AHSPError as exc:
					_LOG.warning('Failed to fetch %s: %s', accessions[i], exc)
					results[i] = exc
				meter.increment()

		return results

	def fetch_references(self, accessions: Sequence[str], progress=None) -> Tuple[List[Tuple[bytes, GenomeMetadata]], List[ItemFailure]]:
		"""Fetch genomes by accession through the cache.

		Returns
		-------
		Tuple[List[Tuple[bytes, GenomeMetadata]], List[ItemFailure]]
			Sequences and metadata of genomes fetched successfully (in input order), and failures.
		"""
		fetched = []
		failed = []
		for acc, result in zip(accessions, self._fetch_many(accessions, progress)):
			if isinstance(result, AHSPError):
				failed.append(ItemFailure(acc, 'fetch', result))
			else:
				fetched.append(result)
		return fetched, failed

	def download_references(self, query: str, limit: int, progress=None) -> List[GenomeMetadata]:
		"""Search the genome source and download the results into the cache.

		Genomes already in the cache are not downloaded again.

		Returns
		-------
		List[GenomeMetadata]
			Metadata of genomes successfully downloaded or found in the cache, in search result order.

		Raises
		------
		BatchError
			If the search had results but all of them failed to download.
		"""
		accessions = self.source.search(query, limit)
		fetched, failed = self.fetch_references(accessions, progress)

		if accessions and not fetched:
			raise BatchError(f'Failed to download all {len(accessions)} genomes', failed)

		return [metadata for _, metadata in fetched]

	def _build_and_store(self, items: List[Tuple[bytes, GenomeMetadata]], report: UpdateReport, replace: bool, progress=None):
		"""Build signatures for items and add successes to the database, recording results in the report."""
		results = self.builder.build_batch(items, progress=progress, max_workers=self.config.threads)

		for result in results:
			if not result.success:
				report.failed.append(ItemFailure(result.id, 'build', result.error))
				continue

			sig = result.signature
			if not replace and self.db.has_signature(sig.id):
				# Added concurrently since the check before building
				report.skipped.append(sig.id)
				continue

			try:
				self.db.add_signature(sig)
			except AHSPError as exc:
				_LOG.error('Failed to store signature %s: %s', sig.id, exc)
				report.failed.append(ItemFailure(sig.id, 'store', exc))
			else:
				report.added.append(sig.id)

	def _split_existing(self, ids: Iterable[str], report: UpdateReport, replace: bool) -> List[str]:
		todo = []
		for id_ in ids:
			report.requested.append(id_)
			if not replace and self.db.has_signature(id_):
				report.skipped.append(id_)
			else:
				todo.append(id_)
		if report.skipped:
			_LOG.info('Skipping %d genomes already in database', len(report.skipped))
		return todo

	def process_references(self, items: Sequence[Union[GenomeMetadata, str]], replace: bool = False, progress=None) -> List[str]:
		"""Build signatures for cached genomes and add them to the database.

		Parameters
		----------
		items
			Metadata (or accessions) of genomes previously downloaded with
			:meth:`download_references`.
		replace
			Replace signatures already in the database. If False they are skipped.

		Returns
		-------
		List[str]
			Ids of signatures added.
		"""
		return self.process_references_report(items, replace, progress).check().added

	def process_references_report(self, items: Sequence[Union[GenomeMetadata, str]], replace: bool = False, progress=None) -> UpdateReport:
		"""Like :meth:`process_references` but return an :class:`.UpdateReport` and never raise :exc:`BatchError`."""
		report = UpdateReport()
		accessions = [item.accession if isinstance(item, GenomeMetadata) else item for item in items]
		todo = self._split_existing(accessions, report, replace)

		loaded = []
		for acc in todo:
			try:
				loaded.append(self.cache.read(acc))
			except (NotFoundError, FileIOError) as exc:
				_LOG.warning('Could not read %s from cache: %s', acc, exc)
				report.failed.append(ItemFailure(acc, 'fetch', exc))

		self._build_and_store(loaded, report, replace, progress)
		return report

	def update_references(self, query: str, limit: int, replace: bool = False, progress=None) -> UpdateReport:
		"""Search for genomes and add their signatures to the database.

		Genomes whose ids are already in the database are skipped before downloading, unless
		``replace`` is True.

		Raises
		------
		BatchError
			If there was at least one genome to add and all of them failed.
		"""
		accessions = self.source.search(query, limit)
		report = UpdateReport()
		todo = self._split_existing(accessions, report, replace)

		fetched, failed = self.fetch_references(todo, progress)
		report.failed.extend(failed)

		self._build_and_store(fetched, report, replace, progress)

		_LOG.info(
			'Query %r: %d added, %d skipped, %d failed',
			query, len(report.added), len(report.skipped), len(report.failed),
		)
		return report.check()

	def search_and_add_references(self, query: str, limit: int) -> List[str]:
		"""Search for genomes and add their signatures to the database.

		Returns
		-------
		List[str]
			Ids of signatures added. Genomes already present are skipped and not included.

		Raises
		------
		BatchError
			If there was at least one genome to add and all of them failed.
		"""
		return self.update_references(query, limit).added

	def add_files(self,
	              files: Sequence[Union[FilePath, SequenceFile]],
	              lineage: Union[str, Sequence[str]],
	              organism: Optional[str] = None,
	              taxid: int = 0,
	              replace: bool = False,
	              progress=None,
	              ) -> UpdateReport:
		"""Add signatures of local FASTA files to the database.

		Each file is one genome, its id is the file name without sequence file extensions.

		Parameters
		----------
		files
			Sequence files. Gzip compression is detected automatically for paths.
		lineage
			Lineage shared by all genomes, as a sequence of names or ``;``-delimited string.
		organism
			Organism name. Defaults to the last lineage term.
		taxid
			Taxonomy ID.
		replace
			Replace signatures already in the database.

		Raises
		------
		BatchError
			If all files failed.
		"""
		if isinstance(lineage, str):
			lineage = parse_lineage(lineage)
		lineage = tuple(lineage)
		if organism is None:
			organism = lineage[-1] if lineage else 'unknown'

		seqfiles = [f if isinstance(f, SequenceFile) else SequenceFile(f, compression='auto') for f in files]
		by_id = {_file_accession(sf.path): sf for sf in seqfiles}

		report = UpdateReport()
		todo = self._split_existing(by_id, report, replace)

		loaded = []
		for id_ in todo:
			sf = by_id[id_]
			try:
				with sf.parse() as records:
					seqs = [record.seq for record in records]
			except (OSError, ValueError) as exc:
				err = FileIOError(f'Error reading sequence file {sf.path}: {exc}')
				err.__cause__ = exc
				_LOG.warning('%s', err)
				report.failed.append(ItemFailure(id_, 'fetch', err))
				continue

			metadata = GenomeMetadata(
				accession=id_,
				organism=organism,
				taxid=taxid,
				lineage=lineage,
				length=sum(map(len, seqs)),
				source='file',
			)
			loaded.append((join_seqs(seqs), metadata))

		self._build_and_store(loaded, report, replace, progress)
		return report.check()
