"""Calculate multi-resolution signatures from sequence data."""

import heapq
import logging
from typing import Optional, Sequence, Iterable, List, Tuple, Union
from concurrent.futures import Executor, ThreadPoolExecutor, as_completed
from contextlib import nullcontext

import numpy as np
from attr import attrs, attrib

from .base import Sketch, MultiResolutionSignature, HASH_DTYPE
from ahsp.kmers import SketchSpec, DEFAULT_HASH_SEED, DEFAULT_CHUNK_SIZE, iter_canonical_hashes
from ahsp.seq import DNASeq, SequenceFile, seq_to_bytes, count_valid
from ahsp.genome import GenomeMetadata
from ahsp.errors import AHSPError, SignatureError, EmptySequenceError, FileIOError, \
	InvalidParametersError
from ahsp.util.progress import get_progress


_LOG = logging.getLogger(__name__)


class BottomKAccumulator:
	"""Tracks the ``size`` smallest distinct values added to it.

	Values are kept in a bounded max-heap (stored as negated values in a :mod:`heapq` min-heap),
	along with a set for fast membership checks. Single values are added with :meth:`add`, whole
	arrays of hash values with :meth:`update`.

	Attributes
	----------
	size
		Maximum number of values kept.
	"""
	size: int

	def __init__(self, size: int):
		if size < 1:
			raise InvalidParametersError(f'Size must be positive, got {size}')
		self.size = size
		self._heap = []
		self._set = set()

	def __len__(self):
		return len(self._heap)

	def __contains__(self, value):
		return int(value) in self._set

	@property
	def full(self) -> bool:
		return len(self._heap) >= self.size

	def max(self) -> Optional[int]:
		"""Largest value currently kept, or None if empty."""
		return -self._heap[0] if self._heap else None

	def add(self, value: int) -> bool:
		"""Add a single value.

		Returns
		-------
		bool
			Whether the value was inserted.
		"""
		value = int(value)
		if value in self._set:
			return False

		if len(self._heap) < self.size:
			heapq.heappush(self._heap, -value)
			self._set.add(value)
			return True

		if value < -self._heap[0]:
			removed = -heapq.heapreplace(self._heap, -value)
			self._set.discard(removed)
			self._set.add(value)
			return True

		return False

	def update(self, values: Union[np.ndarray, Iterable[int]]):
		"""Add an array of values at once."""
		values = np.unique(np.asarray(values, dtype=HASH_DTYPE))
		if self.full:
			values = values[values < np.uint64(self.max())]
		if len(values) == 0:
			return

		merged = np.union1d(self.values(), values)[:self.size]
		self._set = set(merged.tolist())
		self._heap = [-v for v in self._set]
		heapq.heapify(self._heap)

	def values(self) -> np.ndarray:
		"""Get the current values as a sorted ``uint64`` array."""
		arr = np.fromiter(self._set, dtype=HASH_DTYPE, count=len(self._set))
		arr.sort()
		return arr

	def clear(self):
		self._heap.clear()
		self._set.clear()


def calc_sketch(spec: SketchSpec, seq: DNASeq, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Sketch:
	"""Calculate the bottom-k sketch of a single sequence.

	Windows containing non-nucleotide bytes are skipped. A sequence shorter than ``spec.k`` gives an
	empty sketch.

	Parameters
	----------
	spec
		Sketch parameters.
	seq
		Sequence to process. Lowercase characters are OK.
	chunk_size
		Number of k-mer windows hashed at once, bounds memory use for long sequences.
	"""
	acc = BottomKAccumulator(spec.size)
	for hashes in iter_canonical_hashes(seq, spec.k, spec.hash_seed, chunk_size):
		acc.update(hashes)
	return Sketch(spec, acc.values())


@attrs(frozen=True)
class BuildResult:
	"""Outcome of building a single signature as part of a batch.

	Attributes
	----------
	id
		Id of the signature that was to be built.
	signature
		The signature, if successful.
	error
		Exception raised, if not successful.
	"""
	id: str = attrib()
	signature: Optional[MultiResolutionSignature] = attrib(default=None)
	error: Optional[AHSPError] = attrib(default=None)

	@property
	def success(self) -> bool:
		return self.error is None


BuildItem = Tuple[DNASeq, GenomeMetadata]


@attrs(frozen=True)
class SignatureBuilder:
	"""Calculates multi-resolution signatures from sequences.

	Instances are immutable and hold no state between calls, so a single builder may be shared by
	any number of threads.

	Attributes
	----------
	macro_k
		K-mer length of the coarse sketch.
	meso_k
		K-mer length of the fine sketch.
	sketch_size
		Maximum number of hashes in each sketch.
	hash_seed
		Seed of the hash function.
	chunk_size
		Number of k-mer windows hashed at once.

	Raises
	------
	InvalidParametersError
		On construction, if any parameter is out of range.
	"""
	macro_k: int = attrib(default=21)
	meso_k: int = attrib(default=11)
	sketch_size: int = attrib(default=1000)
	hash_seed: int = attrib(default=DEFAULT_HASH_SEED)
	chunk_size: int = attrib(default=DEFAULT_CHUNK_SIZE)

	def __attrs_post_init__(self):
		# Raises InvalidParametersError for bad k or sketch size
		SketchSpec(self.macro_k, self.sketch_size, self.hash_seed)
		SketchSpec(self.meso_k, self.sketch_size, self.hash_seed)
		if not isinstance(self.chunk_size, int) or self.chunk_size < 1:
			raise InvalidParametersError(f'Chunk size must be a positive integer, got {self.chunk_size!r}')

	@property
	def macro_spec(self) -> SketchSpec:
		return SketchSpec(self.macro_k, self.sketch_size, self.hash_seed)

	@property
	def meso_spec(self) -> SketchSpec:
		return SketchSpec(self.meso_k, self.sketch_size, self.hash_seed)

	def build(self, sequence: DNASeq, metadata: GenomeMetadata, id: Optional[str] = None) -> MultiResolutionSignature:
		"""Build the signature of a single sequence.

		Parameters
		----------
		sequence
			Nucleotide sequence. Lowercase and non-nucleotide characters are accepted, windows
			containing the latter are skipped.
		metadata
			Metadata of the genome.
		id
			Id of the signature. Defaults to ``metadata.accession``.

		Raises
		------
		EmptySequenceError
			If the sequence contains no valid nucleotides at all.
		"""
		seq = seq_to_bytes(sequence)
		if count_valid(seq) == 0:
			raise EmptySequenceError(f'Sequence for {metadata.accession} contains no valid nucleotides')

		macro = calc_sketch(self.macro_spec, seq, self.chunk_size)
		meso = calc_sketch(self.meso_spec, seq, self.chunk_size)

		sig_id = metadata.accession if id is None else id
		_LOG.debug('Built signature %s (macro %d, meso %d hashes)', sig_id, len(macro), len(meso))
		return MultiResolutionSignature(sig_id, macro, meso, metadata)

	def build_file(self, seqfile: Union[SequenceFile, str], metadata: GenomeMetadata, id: Optional[str] = None) -> MultiResolutionSignature:
		"""Build a signature from a sequence file.

		All records in the file are joined into a single sequence, separated so that no k-mer spans
		two records.

		Raises
		------
		FileIOError
			If the file could not be read or parsed.
		"""
		if not isinstance(seqfile, SequenceFile):
			seqfile = SequenceFile(seqfile, compression='auto')

		try:
			seq = seqfile.read_joined()
		except (OSError, ValueError) as exc:
			raise FileIOError(f'Error reading sequence file {seqfile.path}: {exc}') from exc

		return self.build(seq, metadata, id=id)

	def _build_item(self, item: BuildItem) -> BuildResult:
		sequence, metadata = item
		try:
			sig = self.build(sequence, metadata)

		except AHSPError as exc:
			_LOG.warning('Failed to build signature for %s: %s', metadata.accession, exc)
			return BuildResult(metadata.accession, error=exc)

		except (TypeError, ValueError) as exc:
			_LOG.warning('Failed to build signature for %s: %s', metadata.accession, exc)
			err = SignatureError(f'Invalid sequence data for {metadata.accession}: {exc}')
			err.__cause__ = exc
			return BuildResult(metadata.accession, error=err)

		return BuildResult(sig.id, signature=sig)

	def build_batch(self,
	                items: Sequence[BuildItem],
	                progress=None,
	                max_workers: Optional[int] = None,
	                executor: Optional[Executor] = None,
	                ) -> List[BuildResult]:
		"""Build signatures for multiple sequences concurrently.

		A failure for one item does not affect the others, it is recorded in that item's result.

		Parameters
		----------
		items
			Sequence of ``(sequence, metadata)`` pairs.
		progress
			Display a progress meter. See :func:`ahsp.util.progress.get_progress` for allowed values.
		max_workers
			Number of worker threads. If 1, items are processed sequentially in the calling thread.
		executor
			Instance of class:`concurrent.futures.Executor` to use. Overrides ``max_workers``.

		Returns
		-------
		List[BuildResult]
			One result per item, in the same order as ``items``.
		"""
		items = list(items)

		if executor is None:
			if max_workers is not None and max_workers < 1:
				raise InvalidParametersError(f'max_workers must be positive, got {max_workers}')

			if max_workers == 1:
				with get_progress(progress, len(items)) as meter:
					results = []
					for item in items:
						results.append(self._build_item(item))
						meter.increment()
				return results

			executor = ThreadPoolExecutor(max_workers=max_workers)
			executor_context = executor

		else:
			executor_context = nullcontext()

		results = [None] * len(items)
		future_to_index = dict()

		with executor_context, get_progress(progress, len(items)) as meter:
			for i, item in enumerate(items):
				future = executor.submit(self._build_item, item)
				future_to_index[future] = i

			for future in as_completed(future_to_index):
				i = future_to_index[future]
				results[i] = future.result()
				meter.increment()

		assert all(r is not None for r in results)
		return results
