"""Test the ahsp.cache module."""

import os
import time
import threading

import pytest

from ahsp.cache import GenomeCache, check_accession
from ahsp.errors import NotFoundError, InvalidParametersError, FileIOError, SerializationError
from ahsp.test import make_metadata


@pytest.fixture()
def cache(tmp_path):
	return GenomeCache(tmp_path / 'cache')


def set_age(cache, accession, days):
	t = time.time() - days * 24 * 3600
	for path in [cache.seq_path(accession), cache.meta_path(accession)]:
		os.utime(path, (t, t))


def test_check_accession():
	assert check_accession('GCF_000005845.2') == 'GCF_000005845.2'

	for bad in ['', '  ', '.', '..', 'a/b', '../x', 'a\\b', None]:
		with pytest.raises(InvalidParametersError):
			check_accession(bad)


def test_creates_directory(tmp_path):
	path = tmp_path / 'a' / 'b'
	GenomeCache(path)
	assert path.is_dir()


def test_create_fails(tmp_path):
	file = tmp_path / 'file'
	file.write_text('x')
	with pytest.raises(FileIOError):
		GenomeCache(file / 'sub')


def test_write_read(cache):
	md = make_metadata('GCF_1', length=8, assembly_level='Contig')
	assert not cache.has('GCF_1')
	assert cache.get('GCF_1') is None

	cache.write('GCF_1', b'ACGTACGT', md)

	assert cache.has('GCF_1')
	assert 'GCF_1' in cache
	assert cache.seq_path('GCF_1').read_bytes() == b'ACGTACGT'
	assert cache.read('GCF_1') == (b'ACGTACGT', md)
	assert cache.read_metadata('GCF_1') == md
	assert cache.accessions() == ['GCF_1']

	# No temporary files left behind
	assert sorted(p.name for p in cache.directory.iterdir()) == ['GCF_1.fna', 'GCF_1.json']


def test_overwrite(cache):
	cache.write('A', b'AAAA', make_metadata('A'))
	cache.write('A', b'CCCC', make_metadata('A', organism='other'))
	seq, md = cache.read('A')
	assert seq == b'CCCC'
	assert md.organism == 'other'


def test_missing(cache):
	with pytest.raises(NotFoundError):
		cache.read('nope')
	with pytest.raises(NotFoundError):
		cache.read_metadata('nope')


def test_incomplete(cache):
	"""Sequence without metadata file is not a complete entry."""
	cache.seq_path('A').write_bytes(b'ACGT')
	assert not cache.has('A')
	assert cache.get('A') is None
	assert cache.accessions() == []


def test_corrupt_metadata(cache):
	cache.write('A', b'ACGT', make_metadata('A'))
	cache.meta_path('A').write_text('{not json')
	with pytest.raises(FileIOError):
		cache.read('A')


def test_write_unencodable(cache):
	md = make_metadata('A', extra=dict(tags=[]))
	md.extra['tags'] = {'a', 'b'}

	with pytest.raises(SerializationError):
		cache.write('A', b'ACGT', md)

	assert not cache.seq_path('A').exists()
	assert not cache.meta_path('A').exists()


def test_remove(cache):
	cache.write('A', b'ACGT', make_metadata('A'))
	assert cache.remove('A')
	assert not cache.has('A')
	assert not cache.remove('A')


def test_expiry(tmp_path):
	cache = GenomeCache(tmp_path, max_age_days=30)
	cache.write('old', b'ACGT', make_metadata('old'))
	cache.write('new', b'ACGT', make_metadata('new'))
	set_age(cache, 'old', 31)
	set_age(cache, 'new', 29)

	assert cache.is_expired('old')
	assert not cache.has('old')
	assert cache.get('old') is None
	assert cache.has('new')

	assert cache.clear_expired() == 1
	assert cache.accessions() == ['new']

	# No expiry by default
	cache2 = GenomeCache(tmp_path)
	set_age(cache2, 'new', 1000)
	assert cache2.has('new')


def test_invalid_max_age(tmp_path):
	with pytest.raises(InvalidParametersError):
		GenomeCache(tmp_path, max_age_days=-1)


def test_concurrent_writes(cache):
	"""Concurrent writers of the same accession each leave a complete entry."""
	seqs = [bytes([c]) * 100000 for c in b'ACGT']
	errors = []

	def worker(seq):
		try:
			for _ in range(5):
				cache.write('A', seq, make_metadata('A', length=len(seq)))
				got, _ = cache.read('A')
				assert got in seqs
		except Exception as exc:
			errors.append(exc)

	threads = [threading.Thread(target=worker, args=(seq,)) for seq in seqs]
	for t in threads:
		t.start()
	for t in threads:
		t.join()

	assert errors == []
	assert cache.read('A')[0] in seqs
