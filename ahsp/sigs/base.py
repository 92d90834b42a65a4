"""Base types for k-mer sketches and multi-resolution genome signatures."""

from typing import Tuple, Sequence, Dict, Any, Optional

import numpy as np
from attr import attrs, attrib

from ahsp.kmers import SketchSpec
from ahsp.genome import GenomeMetadata
from ahsp.errors import InvalidParametersError, SignatureError


#: Data type of sketch hash values.
HASH_DTYPE = np.dtype(np.uint64)


def _hashes_converter(value) -> np.ndarray:
	arr = np.array(value, dtype=HASH_DTYPE, copy=True)
	arr.setflags(write=False)
	return arr


def sketch_eq(a: np.ndarray, b: np.ndarray) -> bool:
	"""Check two hash arrays are equal."""
	return a.shape == b.shape and bool(np.array_equal(a, b))


@attrs(frozen=True, eq=False, repr=False)
class Sketch:
	"""A bottom-k sketch: the smallest distinct canonical k-mer hashes of a sequence.

	Attributes
	----------
	spec
		Parameters the sketch was calculated with. Sketches are only comparable if their specs are
		equal.
	hashes
		Read-only ``uint64`` array of hash values in strictly ascending order. Its length is at most
		``spec.size``, and is smaller only if the sequence has fewer distinct k-mers.
	"""
	spec: SketchSpec = attrib()
	hashes: np.ndarray = attrib(converter=_hashes_converter)

	@hashes.validator
	def _check_hashes(self, attribute, value):
		if value.ndim != 1:
			raise SignatureError('Sketch hashes must be a one-dimensional array')
		if len(value) > self.spec.size:
			raise SignatureError(f'Sketch has {len(value)} hashes, exceeds size {self.spec.size}')
		if len(value) > 1 and not np.all(value[1:] > value[:-1]):
			raise SignatureError('Sketch hashes must be strictly increasing')

	@classmethod
	def empty(cls, spec: SketchSpec) -> 'Sketch':
		"""Create a sketch containing no hash values."""
		return cls(spec, np.zeros(0, dtype=HASH_DTYPE))

	def __len__(self):
		return len(self.hashes)

	def __eq__(self, other):
		if not isinstance(other, Sketch):
			return NotImplemented
		return self.spec == other.spec and sketch_eq(self.hashes, other.hashes)

	def __hash__(self):
		return hash((self.spec, self.hashes.tobytes()))

	def __repr__(self):
		return f'<{type(self).__name__} k={self.spec.k} size={self.spec.size} len={len(self)}>'

	def check_comparable(self, other: 'Sketch'):
		"""Raise :exc:`InvalidParametersError` if the two sketches were calculated with different parameters."""
		if self.spec != other.spec:
			raise InvalidParametersError(f'Cannot compare sketches with specs {self.spec!r} and {other.spec!r}')

	def jaccard(self, other: 'Sketch') -> float:
		"""Estimate the Jaccard index of the k-mer sets of the two sketched sequences.

		Uses the standard bottom-k estimator: the fraction of the ``size`` smallest hashes of the
		union of both sketches that are present in both. Returns 0 if either sketch is empty.

		Raises
		------
		InvalidParametersError
			If the sketches are not comparable.
		"""
		self.check_comparable(other)

		if len(self) == 0 or len(other) == 0:
			return 0.0

		union = np.union1d(self.hashes, other.hashes)[:self.spec.size]
		both = np.intersect1d(self.hashes, other.hashes, assume_unique=True)
		shared = np.count_nonzero(np.isin(union, both, assume_unique=True))
		return shared / len(union)


@attrs(frozen=True, repr=False)
class MultiResolutionSignature:
	"""Signature of a genome consisting of sketches at two k-mer resolutions.

	Equality is structural over all attributes.

	Attributes
	----------
	id
		Unique identifier of the signature, by default the accession of the genome.
	macro
		Coarse sketch calculated with a long k-mer length.
	meso
		Fine sketch calculated with a short k-mer length.
	metadata
		Metadata of the genome the signature was calculated from.
	"""
	id: str = attrib()
	macro: Sketch = attrib()
	meso: Sketch = attrib()
	metadata: GenomeMetadata = attrib()

	@id.validator
	def _check_id(self, attribute, value):
		if not isinstance(value, str) or not value:
			raise SignatureError('Signature id must be a non-empty string')

	@property
	def sketches(self) -> Tuple[Sketch, Sketch]:
		"""The two sketches ordered from coarse to fine."""
		return self.macro, self.meso

	@property
	def specs(self) -> Tuple[SketchSpec, SketchSpec]:
		return self.macro.spec, self.meso.spec

	def __repr__(self):
		return f'<{type(self).__name__} id={self.id!r} organism={self.metadata.organism!r}>'

	def similarity(self, other: 'MultiResolutionSignature', weights: Sequence[float] = (0.5, 0.5)) -> float:
		"""Weighted mean of the Jaccard estimates at each resolution.

		Parameters
		----------
		other
			Signature to compare to. Must have been calculated with the same parameters.
		weights
			Weights of the macro and meso resolutions. Must be non-negative with a positive sum.

		Raises
		------
		InvalidParametersError
			If the signatures are not comparable or the weights are invalid.
		"""
		weights = tuple(float(w) for w in weights)
		if len(weights) != 2 or any(w < 0 for w in weights) or sum(weights) <= 0:
			raise InvalidParametersError(f'Expected two non-negative weights with positive sum, got {weights!r}')

		total = 0.0
		for w, a, b in zip(weights, self.sketches, other.sketches):
			total += w * a.jaccard(b)
		return total / sum(weights)
