"""Test the ahsp.db.sigdb module."""

import threading

import pytest
import numpy as np
import sqlalchemy as sa

from ahsp.db.sigdb import SignatureDatabase
from ahsp.db.models import SignatureRow, TaxonomyEntry
from ahsp.sigs.calc import SignatureBuilder
from ahsp.errors import NotFoundError, TaxonomyError, InvalidParametersError, SerializationError, \
	StorageError
from ahsp.test import random_seq, make_metadata


LINEAGES = {
	'G1': ['Bacteria', 'Proteobacteria', 'Escherichia'],
	'G2': ['Bacteria', 'Proteobacteria', 'Salmonella'],
	'G3': ['Bacteria', 'Firmicutes', 'Bacillus'],
	'G4': ['Archaea', 'Euryarchaeota'],
}


@pytest.fixture(scope='module')
def sigs(small_builder):
	np.random.seed(0)
	return {
		acc: small_builder.build(random_seq(1000), make_metadata(acc, lineage, 1000))
		for acc, lineage in LINEAGES.items()
	}


@pytest.fixture()
def filled_db(memdb, sigs):
	for sig in sigs.values():
		memdb.add_signature(sig)
	return memdb


def taxonomy_rows(db):
	with db.engine.connect() as conn:
		return sorted(conn.execute(sa.select(TaxonomyEntry.term, TaxonomyEntry.signature_id)).all())


class TestBasic:

	def test_empty(self, memdb):
		assert memdb.is_empty()
		assert memdb.count() == 0
		assert len(memdb) == 0
		assert memdb.list_ids() == []
		assert memdb.get_all_signatures() == []
		assert memdb.hash_seed() is None

	def test_add_get(self, memdb, sigs):
		sig = sigs['G1']
		assert memdb.add_signature(sig) == 'G1'

		assert not memdb.is_empty()
		assert memdb.has_signature('G1')
		assert not memdb.has_signature('G2')
		assert memdb.get_signature('G1') == sig
		assert memdb.hash_seed() == sig.macro.spec.hash_seed

	def test_unencodable_metadata(self, memdb, small_builder):
		md = make_metadata('G9', extra=dict(tags=[]))
		sig = small_builder.build(random_seq(500), md)
		md.extra['tags'] = {'a', 'b'}

		with pytest.raises(SerializationError):
			memdb.add_signature(sig)
		assert memdb.is_empty()

	def test_not_found(self, memdb):
		with pytest.raises(NotFoundError):
			memdb.get_signature('nope')

	def test_list(self, filled_db, sigs):
		assert filled_db.list_ids() == sorted(sigs)
		assert filled_db.count() == len(sigs)

		all_sigs = filled_db.get_all_signatures()
		assert [s.id for s in all_sigs] == sorted(sigs)
		for s in all_sigs:
			assert s == sigs[s.id]

	def test_add_replace(self, memdb, sigs, small_builder):
		"""Re-adding an id replaces the record and its taxonomy entries."""
		memdb.add_signature(sigs['G1'])

		np.random.seed(1)
		new_md = make_metadata('G1', ['Bacteria', 'Actinobacteria'], 1000)
		new_sig = small_builder.build(random_seq(1000), new_md)
		memdb.add_signature(new_sig)
		memdb.add_signature(new_sig)

		assert memdb.count() == 1
		assert memdb.get_signature('G1') == new_sig
		assert memdb.search_by_taxonomy('Escherichia') == []
		assert memdb.search_by_taxonomy('Proteobacteria') == []
		assert memdb.search_by_taxonomy('Actinobacteria') == [new_sig]
		assert taxonomy_rows(memdb) == [('Actinobacteria', 'G1'), ('Bacteria', 'G1')]

	def test_duplicate_terms(self, memdb, small_builder):
		"""Lineages with repeated or blank terms give one index entry per distinct term."""
		np.random.seed(0)
		md = make_metadata('X', ['Bacteria', 'Bacteria', ' ', 'Foo'])
		memdb.add_signature(small_builder.build(random_seq(100), md))
		assert taxonomy_rows(memdb) == [('Bacteria', 'X'), ('Foo', 'X')]

	def test_remove(self, filled_db, sigs):
		filled_db.remove_signature('G1')

		assert not filled_db.has_signature('G1')
		assert filled_db.count() == len(sigs) - 1
		assert [s.id for s in filled_db.search_by_taxonomy('Bacteria')] == ['G2', 'G3']
		assert all(id_ != 'G1' for _, id_ in taxonomy_rows(filled_db))

		with pytest.raises(NotFoundError):
			filled_db.remove_signature('G1')

	def test_info(self, memdb):
		assert memdb.get_info('foo') is None
		assert memdb.get_info('foo', 1) == 1

		memdb.set_info('foo', dict(a=[1, 2]))
		assert memdb.get_info('foo') == dict(a=[1, 2])
		memdb.set_info('foo', 3)
		assert memdb.get_info('foo') == 3

		with pytest.raises(ValueError):
			memdb.set_info('hash_seed', 1)

	def test_closed(self, sigs):
		db = SignatureDatabase.open()
		db.close()
		assert db.closed
		db.close()

		with pytest.raises(StorageError):
			db.add_signature(sigs['G1'])
		with pytest.raises(StorageError):
			db.count()

	def test_context_manager(self):
		with SignatureDatabase.open() as db:
			assert db.is_empty()
		assert db.closed


class TestTaxonomySearch:

	def test_completeness(self, filled_db, sigs):
		"""Every term returns exactly the signatures whose lineage contains it."""
		terms = {term for lineage in LINEAGES.values() for term in lineage}

		for term in terms:
			expected = sorted(acc for acc, lineage in LINEAGES.items() if term in lineage)
			found = filled_db.search_by_taxonomy(term)
			assert [s.id for s in found] == expected
			assert filled_db.search_ids_by_taxonomy(term) == expected
			for s in found:
				assert s == sigs[s.id]

	def test_exact(self, filled_db):
		assert filled_db.search_by_taxonomy('bacteria') == []
		assert filled_db.search_by_taxonomy('Bact') == []
		assert filled_db.search_by_taxonomy('Nothing') == []

	def test_strip(self, filled_db):
		assert len(filled_db.search_by_taxonomy(' Bacteria ')) == 3

	@pytest.mark.parametrize('term', ['', '   ', None])
	def test_blank(self, filled_db, term):
		with pytest.raises(TaxonomyError):
			filled_db.search_by_taxonomy(term)


class TestHashFamily:

	def test_seed_mismatch(self, memdb, sigs):
		memdb.add_signature(sigs['G1'])

		builder = SignatureBuilder(macro_k=15, meso_k=7, sketch_size=50, hash_seed=12345)
		np.random.seed(0)
		other = builder.build(random_seq(1000), make_metadata('Z'))

		with pytest.raises(InvalidParametersError):
			memdb.add_signature(other)

		assert not memdb.has_signature('Z')
		assert memdb.search_ids_by_taxonomy('Bacteria') == ['G1']

	def test_first_signature_sets_seed(self, memdb):
		builder = SignatureBuilder(macro_k=15, meso_k=7, sketch_size=50, hash_seed=7)
		np.random.seed(0)
		memdb.add_signature(builder.build(random_seq(1000), make_metadata('Z')))
		assert memdb.hash_seed() == 7


class TestCorruption:

	def corrupt(self, db, id_):
		with db.engine.begin() as conn:
			conn.execute(sa.update(SignatureRow).where(SignatureRow.id == id_).values(data=b'garbage'))

	def test_get(self, filled_db):
		self.corrupt(filled_db, 'G2')
		with pytest.raises(SerializationError):
			filled_db.get_signature('G2')

	def test_get_all(self, filled_db, sigs):
		self.corrupt(filled_db, 'G2')

		with pytest.raises(SerializationError):
			filled_db.get_all_signatures()

		result = filled_db.get_all_signatures(errors='skip')
		assert [s.id for s in result] == ['G1', 'G3', 'G4']

		with pytest.raises(ValueError):
			filled_db.get_all_signatures(errors='foo')


class TestFile:

	def test_persist(self, tmp_path, sigs):
		path = tmp_path / 'sub' / 'test.db'

		with SignatureDatabase.open(path) as db:
			for sig in sigs.values():
				db.add_signature(sig)

		assert path.is_file()

		with SignatureDatabase.open(path, create=False) as db:
			assert db.list_ids() == sorted(sigs)
			assert db.get_signature('G3') == sigs['G3']
			assert [s.id for s in db.search_by_taxonomy('Proteobacteria')] == ['G1', 'G2']

	def test_no_create(self, tmp_path):
		with pytest.raises(StorageError):
			SignatureDatabase.open(tmp_path / 'missing.db', create=False)

	def test_concurrent_writes(self, tmp_path, small_builder):
		"""Concurrent adds from several threads all succeed, readers see consistent state."""
		np.random.seed(0)
		items = [
			small_builder.build(random_seq(500), make_metadata(f'T{i}', ['Bacteria', f'P{i % 3}']))
			for i in range(20)
		]
		errors = []

		with SignatureDatabase.open(tmp_path / 'test.db') as db:

			def worker(chunk):
				try:
					for sig in chunk:
						db.add_signature(sig)
						ids = db.search_ids_by_taxonomy('Bacteria')
						assert sig.id in ids
				except Exception as exc:
					errors.append(exc)

			threads = [threading.Thread(target=worker, args=(items[i::4],)) for i in range(4)]
			for t in threads:
				t.start()
			for t in threads:
				t.join()

			assert errors == []
			assert db.count() == 20
			assert len(db.search_ids_by_taxonomy('Bacteria')) == 20
			assert len(db.search_ids_by_taxonomy('P0')) == 7
