"""Test the ahsp.seq module."""

from pathlib import Path
from itertools import product

import pytest
import numpy as np
from Bio import SeqIO
from Bio.Seq import Seq
from Bio.SeqRecord import SeqRecord

from ahsp.seq import revcomp, seq_to_bytes, encode_seq, count_valid, join_seqs, SequenceFile, \
	NUCLEOTIDES, INVALID_CODE, RECORD_SEPARATOR
from ahsp.test import random_seq


# Complements to nucleotide ASCII codes
NUC_COMPLEMENTS = {
	65: 84,
	84: 65,
	71: 67,
	67: 71,
	97: 116,
	116: 97,
	103: 99,
	99: 103,
}


def check_revcomp(seq, rc):
	"""Assert the reverse complement of a sequence is correct."""
	l = len(seq)
	for i in range(l):
		assert rc[l - i - 1] == NUC_COMPLEMENTS.get(seq[i], seq[i])


def test_revcomp():
	"""Test the revcomp() function."""

	# Check empty
	assert revcomp(b'') == b''

	# Check one-nucleotide values
	for nuc1, nuc2 in NUC_COMPLEMENTS.items():
		b1, b2 = [bytes([n]) for n in [nuc1, nuc2]]
		assert revcomp(b1) == b2

	# Check single invalid code
	assert revcomp(b'N') == b'N'
	assert revcomp(b'n') == b'n'

	# Check all 5-mers
	k = 5
	for nucs in product(NUCLEOTIDES, repeat=k):
		kmer = bytes(nucs)
		rc = revcomp(kmer)
		check_revcomp(kmer, rc)
		assert revcomp(rc) == kmer
		assert revcomp(rc.lower()) == kmer.lower()

	# Other sequence types
	assert revcomp('AACG') == b'CGTT'
	assert revcomp(Seq('AACG')) == b'CGTT'


def test_seq_to_bytes():
	assert seq_to_bytes(b'ACGT') == b'ACGT'
	assert seq_to_bytes(bytearray(b'ACGT')) == bytearray(b'ACGT')
	assert seq_to_bytes('ACGT') == b'ACGT'
	assert seq_to_bytes(Seq('ACGT')) == b'ACGT'

	# Non-ASCII characters become invalid codes
	assert seq_to_bytes('AC\u00e9GT') == b'AC?GT'
	assert encode_seq('AC\u00e9GT')[2] == INVALID_CODE

	with pytest.raises(TypeError):
		seq_to_bytes(123)


def test_encode_seq():
	codes = encode_seq(b'ACGTacgtNn-')
	assert codes.dtype == np.uint8
	assert list(codes[:8]) == [0, 1, 2, 3, 0, 1, 2, 3]
	assert np.all(codes[8:] == INVALID_CODE)

	assert len(encode_seq(b'')) == 0


def test_count_valid():
	assert count_valid(b'') == 0
	assert count_valid(b'NNNN') == 0
	assert count_valid(b'ACGTNacgtn') == 8


def test_join_seqs():
	assert join_seqs([]) == b''
	assert join_seqs([b'ACGT']) == b'ACGT'
	assert join_seqs([b'AC', 'GT', Seq('TT')]) == b'AC' + RECORD_SEPARATOR + b'GT' + RECORD_SEPARATOR + b'TT'


class TestSequenceFile:

	@pytest.fixture(scope='class')
	def records(self):
		np.random.seed(0)
		return [
			SeqRecord(Seq(random_seq(500).decode('ascii')), id=f'seq{i}', description='')
			for i in range(5)
		]

	@pytest.fixture(params=[None, 'gzip'])
	def compression(self, request):
		return request.param

	@pytest.fixture()
	def seqfile(self, tmp_path: Path, records, compression):
		path = tmp_path / ('test.fasta' + ('.gz' if compression else ''))
		sf = SequenceFile(path, 'fasta', compression)
		with sf.open('wt') as f:
			SeqIO.write(records, f, 'fasta')
		return sf

	def test_parse(self, seqfile, records):
		with seqfile.parse() as parsed:
			parsed = list(parsed)

		assert len(parsed) == len(records)
		for rec1, rec2 in zip(parsed, records):
			assert rec1.id == rec2.id
			assert str(rec1.seq) == str(rec2.seq)

	def test_read_joined(self, seqfile, records):
		assert seqfile.read_joined() == join_seqs(r.seq for r in records)

	def test_auto_compression(self, seqfile, records):
		sf = SequenceFile(seqfile.path, compression='auto')
		assert sf.read_joined() == join_seqs(r.seq for r in records)

	def test_gzip_magic(self, seqfile, compression):
		with open(seqfile.path, 'rb') as f:
			magic = f.read(2)
		assert (magic == b'\x1f\x8b') == (compression == 'gzip')

	def test_from_paths(self):
		files = SequenceFile.from_paths(['a.fa', 'b.fa'], 'fasta', 'gzip')
		assert [f.path for f in files] == [Path('a.fa'), Path('b.fa')]
		assert all(f.compression == 'gzip' for f in files)
