"""Core functions for extracting and hashing k-mers.

K-mers are converted to integer indices using two bits per nucleotide (in the order given by
:data:`ahsp.seq.NUCLEOTIDES`), so ``k`` is limited to :data:`MAX_K`. Each index is mapped to a
64-bit hash value with the MurmurHash3 ``fmix64`` finalizer after being mixed with a constant
derived from the hash seed. The *canonical* hash of a k-mer is the smaller of the hashes of the
k-mer and of its reverse complement, so it does not depend on which strand was sequenced.

The hash family is fixed, the seed selects a member of it. Hash values produced with different
seeds are not comparable.
"""

from typing import Dict, Any, Iterator

import numpy as np
from attr import attrs, attrib

from ahsp.errors import InvalidParametersError
from ahsp.seq import DNASeq, encode_seq, INVALID_CODE
from ahsp.io.json import Jsonable
from ahsp.util.misc import chunk_slices


#: Largest supported k-mer length (indices must fit in 64 bits).
MAX_K = 32

#: Seed used when none is specified.
DEFAULT_HASH_SEED = 42

#: Name of the hash family, stored with databases to detect incompatible data.
HASH_FAMILY = 'fmix64'

#: Default number of k-mer windows hashed at once when processing long sequences.
DEFAULT_CHUNK_SIZE = 1 << 20

MASK64 = (1 << 64) - 1

_FMIX_C1 = 0xff51afd7ed558ccd
_FMIX_C2 = 0xc4ceb9fe1a85ec53
_GOLDEN = 0x9e3779b97f4a7c15


def fmix64(x: int) -> int:
	"""MurmurHash3 64-bit finalizer applied to a Python integer."""
	x &= MASK64
	x ^= x >> 33
	x = (x * _FMIX_C1) & MASK64
	x ^= x >> 33
	x = (x * _FMIX_C2) & MASK64
	x ^= x >> 33
	return x


def fmix64_array(x: np.ndarray) -> np.ndarray:
	"""Vectorized version of :func:`.fmix64`, modifies ``x`` (dtype ``uint64``) in place."""
	x ^= x >> np.uint64(33)
	x *= np.uint64(_FMIX_C1)
	x ^= x >> np.uint64(33)
	x *= np.uint64(_FMIX_C2)
	x ^= x >> np.uint64(33)
	return x


def seed_constant(seed: int) -> int:
	"""Get the 64-bit constant k-mer indices are XOR-ed with for the given seed."""
	return fmix64((seed * _GOLDEN) & MASK64)


def kmer_to_index(kmer: DNASeq) -> int:
	"""Convert a k-mer to its integer index.

	Raises
	------
	ValueError
		If an invalid nucleotide code is encountered.
	"""
	codes = encode_seq(kmer)
	if np.any(codes == INVALID_CODE):
		raise ValueError(f'Invalid nucleotide code in k-mer {kmer!r}')

	index = 0
	for c in codes:
		index = (index << 2) | int(c)
	return index


def kmer_to_index_rc(kmer: DNASeq) -> int:
	"""Get the integer index of a k-mer's reverse complement.

	Raises
	------
	ValueError
		If an invalid nucleotide code is encountered.
	"""
	codes = encode_seq(kmer)
	if np.any(codes == INVALID_CODE):
		raise ValueError(f'Invalid nucleotide code in k-mer {kmer!r}')

	index = 0
	for c in codes[::-1]:
		index = (index << 2) | (3 - int(c))
	return index


def kmer_hash(index: int, seed: int = DEFAULT_HASH_SEED) -> int:
	"""Hash a single k-mer index."""
	return fmix64(index ^ seed_constant(seed))


def canonical_kmer_hash(kmer: DNASeq, seed: int = DEFAULT_HASH_SEED) -> int:
	"""Get the canonical hash of a single k-mer.

	This is a slow pure-Python reference for :func:`.iter_canonical_hashes`.

	Raises
	------
	ValueError
		If the k-mer contains an invalid nucleotide code.
	"""
	return min(kmer_hash(kmer_to_index(kmer), seed), kmer_hash(kmer_to_index_rc(kmer), seed))


@attrs(frozen=True, repr=False)
class SketchSpec(Jsonable):
	"""Parameters which determine whether two k-mer sketches are comparable.

	Attributes
	----------
	k
		K-mer length, from 1 to :data:`MAX_K`.
	size
		Maximum number of hash values kept in the sketch.
	hash_seed
		Seed selecting the member of the hash family.
	"""
	k: int = attrib()
	size: int = attrib()
	hash_seed: int = attrib(default=DEFAULT_HASH_SEED)

	@k.validator
	def _check_k(self, attribute, value):
		if not isinstance(value, (int, np.integer)) or not 1 <= value <= MAX_K:
			raise InvalidParametersError(f'k must be an integer from 1 to {MAX_K}, got {value!r}')

	@size.validator
	def _check_size(self, attribute, value):
		if not isinstance(value, (int, np.integer)) or value < 1:
			raise InvalidParametersError(f'Sketch size must be a positive integer, got {value!r}')

	@hash_seed.validator
	def _check_seed(self, attribute, value):
		if not isinstance(value, (int, np.integer)) or value < 0:
			raise InvalidParametersError(f'Hash seed must be a non-negative integer, got {value!r}')

	def __repr__(self):
		return f'{type(self).__name__}(k={self.k}, size={self.size}, hash_seed={self.hash_seed})'

	def __to_json__(self):
		return dict(k=int(self.k), size=int(self.size), hash_seed=int(self.hash_seed))

	@classmethod
	def __from_json__(cls, data: Dict[str, Any]) -> 'SketchSpec':
		return cls(data['k'], data['size'], data.get('hash_seed', DEFAULT_HASH_SEED))


def window_indices(codes: np.ndarray, k: int):
	"""Get the forward and reverse complement indices of every k-mer window in an encoded sequence.

	Parameters
	----------
	codes
		Output of :func:`ahsp.seq.encode_seq`.
	k
		K-mer length.

	Returns
	-------
	Tuple[numpy.ndarray, numpy.ndarray, numpy.ndarray]
		``(forward, reverse, valid)``. The first two are ``uint64`` arrays of length
		``len(codes) - k + 1``, ``valid`` is a boolean array which is false for windows containing
		an invalid nucleotide (the index values for those windows are meaningless).
	"""
	n = len(codes) - k + 1
	if n <= 0:
		empty = np.zeros(0, dtype=np.uint64)
		return empty, empty.copy(), np.zeros(0, dtype=bool)

	invalid = codes == INVALID_CODE
	counts = np.zeros(len(codes) + 1, dtype=np.int64)
	np.cumsum(invalid, dtype=np.int64, out=counts[1:])
	valid = (counts[k:] - counts[:-k]) == 0

	fwd_codes = np.where(invalid, 0, codes).astype(np.uint64)
	rc_codes = np.uint64(3) - fwd_codes
	two = np.uint64(2)

	fwd = np.zeros(n, dtype=np.uint64)
	for j in range(k):
		fwd <<= two
		fwd |= fwd_codes[j:j + n]

	rev = np.zeros(n, dtype=np.uint64)
	for j in range(k - 1, -1, -1):
		rev <<= two
		rev |= rc_codes[j:j + n]

	return fwd, rev, valid


def canonical_hashes(codes: np.ndarray, k: int, seed: int = DEFAULT_HASH_SEED) -> np.ndarray:
	"""Get the canonical hashes of all valid k-mer windows in an encoded sequence.

	Returns
	-------
	numpy.ndarray
		``uint64`` array, one value per valid window in sequence order (may contain duplicates).
	"""
	fwd, rev, valid = window_indices(codes, k)
	const = np.uint64(seed_constant(seed))

	fwd ^= const
	rev ^= const
	fmix64_array(fwd)
	fmix64_array(rev)

	np.minimum(fwd, rev, out=fwd)
	return fwd[valid]


def iter_canonical_hashes(seq: DNASeq,
                          k: int,
                          seed: int = DEFAULT_HASH_SEED,
                          chunk_size: int = DEFAULT_CHUNK_SIZE,
                          ) -> Iterator[np.ndarray]:
	"""Iterate over the canonical k-mer hashes of a sequence in chunks.

	Windows containing anything other than ``ACGT`` (either case) are skipped. Memory use is
	proportional to ``chunk_size`` and not to the length of the sequence.

	Parameters
	----------
	seq
		Sequence to process.
	k
		K-mer length.
	seed
		Hash seed.
	chunk_size
		Number of k-mer windows to process in each chunk.

	Returns
	-------
	Iterator[numpy.ndarray]
		Yields ``uint64`` arrays of hash values.
	"""
	codes = encode_seq(seq)
	nwindows = len(codes) - k + 1
	if nwindows <= 0:
		return

	for s in chunk_slices(nwindows, chunk_size):
		yield canonical_hashes(codes[s.start:s.stop + k - 1], k, seed)
