"""Test ahsp.kmers module."""

from itertools import product

import pytest
import numpy as np

from ahsp.kmers import kmer_to_index, kmer_to_index_rc, fmix64, fmix64_array, \
	kmer_hash, canonical_kmer_hash, canonical_hashes, iter_canonical_hashes, seed_constant, SketchSpec, \
	MAX_K, DEFAULT_HASH_SEED
from ahsp.seq import revcomp, encode_seq, SEQ_TYPES, NUCLEOTIDES
from ahsp.errors import InvalidParametersError
from ahsp.test import random_seq, convert_seq
import ahsp.io.json as ajson


def reference_hashes(seq: bytes, k: int, seed: int) -> list:
	"""Canonical hashes of all valid windows computed one at a time."""
	out = []
	for i in range(len(seq) - k + 1):
		try:
			out.append(canonical_kmer_hash(seq[i:i + k], seed))
		except ValueError:
			continue
	return out


@pytest.mark.parametrize('k', [1, 4, 7])
def test_index_conversion(k):
	indices = set()
	for nucs in product(NUCLEOTIDES, repeat=k):
		kmer = bytes(nucs)
		i = kmer_to_index(kmer)
		assert 0 <= i < 4 ** k
		indices.add(i)
		assert kmer_to_index(kmer.lower()) == i
		assert kmer_to_index_rc(kmer) == kmer_to_index(revcomp(kmer))

	assert len(indices) == 4 ** k


def test_index_max_k():
	kmer = b'T' * MAX_K
	assert kmer_to_index(kmer) == 2 ** 64 - 1
	assert kmer_to_index(b'A' * MAX_K) == 0


def test_index_invalid():
	for kmer in [b'ACNT', b'N', b'AC-G']:
		with pytest.raises(ValueError):
			kmer_to_index(kmer)
		with pytest.raises(ValueError):
			kmer_to_index_rc(kmer)


def test_fmix64():
	assert fmix64(0) == 0

	np.random.seed(0)
	values = np.random.randint(0, 2 ** 63, size=100, dtype=np.int64).astype(np.uint64)
	values[0] = np.uint64(2 ** 64 - 1)

	expected = [fmix64(int(v)) for v in values]
	result = fmix64_array(values.copy())
	assert result.dtype == np.uint64
	assert [int(v) for v in result] == expected


def test_seed():
	assert seed_constant(1) != seed_constant(2)
	assert kmer_hash(1234, 1) != kmer_hash(1234, 2)
	assert kmer_hash(1234) == kmer_hash(1234, DEFAULT_HASH_SEED)


def test_canonical_kmer_hash():
	np.random.seed(0)
	for k in [1, 5, 11, 21, 32]:
		for _ in range(20):
			kmer = random_seq(k)
			h = canonical_kmer_hash(kmer)
			assert h == canonical_kmer_hash(revcomp(kmer))
			assert h == canonical_kmer_hash(kmer.lower())
			assert 0 <= h < 2 ** 64


class TestCanonicalHashes:

	@pytest.mark.parametrize('k', [1, 6, 11, 21, 32])
	def test_matches_reference(self, k):
		"""Compare vectorized calculation to the one-at-a-time reference."""
		np.random.seed(k)
		seq = random_seq(500, 'ACGTACGTACGTNacgt')

		result = canonical_hashes(encode_seq(seq), k, 7)
		assert result.dtype == np.uint64
		assert [int(h) for h in result] == reference_hashes(seq, k, 7)

	def test_short(self):
		assert len(canonical_hashes(encode_seq(b'ACGT'), 5)) == 0
		assert len(canonical_hashes(encode_seq(b''), 5)) == 0
		assert len(canonical_hashes(encode_seq(b'ACGT'), 4)) == 1

	def test_invalid_windows(self):
		"""Windows containing a non-nucleotide are skipped."""
		seq = b'ACGTANACGTA'
		assert len(canonical_hashes(encode_seq(seq), 5)) == 2
		assert len(canonical_hashes(encode_seq(b'NNNNNNNN'), 3)) == 0

	def test_strand(self):
		np.random.seed(0)
		seq = random_seq(1000)
		fwd = canonical_hashes(encode_seq(seq), 11)
		rev = canonical_hashes(encode_seq(revcomp(seq)), 11)
		assert np.array_equal(np.sort(fwd), np.sort(rev))

	@pytest.mark.parametrize('seq_type', SEQ_TYPES)
	@pytest.mark.parametrize('chunk_size', [1, 7, 100, 10000])
	def test_chunked(self, seq_type, chunk_size):
		"""Chunked iteration gives the same hashes as processing the whole sequence at once."""
		np.random.seed(0)
		seq = random_seq(1000, 'ACGTACGTN')
		expected = canonical_hashes(encode_seq(seq), 9)

		chunks = list(iter_canonical_hashes(convert_seq(seq, seq_type), 9, chunk_size=chunk_size))
		assert np.array_equal(np.concatenate(chunks), expected)

	def test_chunked_short(self):
		assert list(iter_canonical_hashes(b'ACG', 5)) == []


class TestSketchSpec:

	def test_valid(self):
		spec = SketchSpec(21, 1000)
		assert spec.k == 21
		assert spec.size == 1000
		assert spec.hash_seed == DEFAULT_HASH_SEED

		assert SketchSpec(21, 1000) == spec
		assert SketchSpec(21, 1000, 1) != spec
		assert len({spec, SketchSpec(21, 1000)}) == 1

	@pytest.mark.parametrize('k,size,seed', [
		(0, 10, 0),
		(-1, 10, 0),
		(MAX_K + 1, 10, 0),
		(21, 0, 0),
		(21, -5, 0),
		(21, 10, -1),
		(21.0, 10, 0),
	])
	def test_invalid(self, k, size, seed):
		with pytest.raises(InvalidParametersError):
			SketchSpec(k, size, seed)

	def test_invalid_is_value_error(self):
		with pytest.raises(ValueError):
			SketchSpec(0, 10)

	def test_json(self):
		spec = SketchSpec(11, 500, 3)
		data = ajson.to_json(spec)
		assert data == dict(k=11, size=500, hash_seed=3)
		assert ajson.from_json(data, SketchSpec) == spec
		assert ajson.loads(ajson.dumps(spec), SketchSpec) == spec
