"""Helper functions for tests."""

import threading
from typing import Optional, Sequence, Dict, Tuple, List

import numpy as np

from ahsp.seq import seq_to_bytes
from ahsp.genome import GenomeMetadata
from ahsp.source.base import GenomeSource
from ahsp.errors import NotFoundError, AHSPError
from ahsp.util.progress import check_progress


def convert_seq(seq, type):
	"""Convert sequence to any of the accepted argument types for signature calculation."""
	seq = seq_to_bytes(seq)
	if type is str:
		return seq.decode('ascii')
	return type(seq)


def random_seq(n: int, chars: str = 'ACGT') -> bytes:
	"""Generate a simple random DNA sequence.

	Parameters
	----------
	n : int
		Length of sequence to generate.
	chars : str
		Characters to use for sequence. Must be encodable as ascii.
	"""
	chars_array = np.frombuffer(chars.encode('ascii'), dtype='u1')
	return np.random.choice(chars_array, n).tobytes()


def make_metadata(accession: str,
                  lineage: Sequence[str] = ('Bacteria', 'Proteobacteria', 'Gammaproteobacteria'),
                  length: int = 0,
                  **kw,
                  ) -> GenomeMetadata:
	"""Create genome metadata with default values for fields not given."""
	kw.setdefault('organism', lineage[-1] if lineage else 'unknown')
	kw.setdefault('taxid', 1)
	kw.setdefault('source', 'test')
	return GenomeMetadata(accession=accession, lineage=lineage, length=length, **kw)


class StubGenomeSource(GenomeSource):
	"""Genome source which serves genomes from memory, for testing.

	Parameters
	----------
	genomes
		Mapping from accession to sequence and metadata. Search results are returned in the order
		of this mapping.
	errors
		Mapping from accession to exception to raise when it is fetched.

	Attributes
	----------
	fetch_counts
		Number of times each accession was fetched.
	search_queries
		Queries passed to :meth:`search`.
	"""
	name = 'test'

	def __init__(self, genomes: Dict[str, Tuple[bytes, GenomeMetadata]], errors: Optional[Dict[str, AHSPError]] = None):
		self.genomes = dict(genomes)
		self.errors = dict(errors or {})
		self.fetch_counts = dict()
		self.search_queries = []
		self._lock = threading.Lock()

	@classmethod
	def random(cls, n: int, seq_len: int = 5000, common: Sequence[str] = ('Bacteria',), prefix: str = 'GCF_0000') -> 'StubGenomeSource':
		"""Create with ``n`` random genomes with distinct lineages all starting with ``common``."""
		genomes = dict()
		for i in range(n):
			acc = f'{prefix}{i:05d}.1'
			lineage = [*common, f'Phylum{i}', f'Genus{i}', f'Genus{i} species{i}']
			seq = random_seq(seq_len)
			genomes[acc] = (seq, make_metadata(acc, lineage, len(seq), taxid=1000 + i, source=cls.name))
		return cls(genomes)

	def search(self, query: str, limit: int) -> List[str]:
		with self._lock:
			self.search_queries.append(query)
		accessions = list(self.genomes) + [acc for acc in self.errors if acc not in self.genomes]
		return accessions[:limit]

	def fetch(self, accession: str) -> Tuple[bytes, GenomeMetadata]:
		with self._lock:
			self.fetch_counts[accession] = self.fetch_counts.get(accession, 0) + 1
		if accession in self.errors:
			raise self.errors[accession]
		try:
			return self.genomes[accession]
		except KeyError:
			raise NotFoundError(f'Accession {accession} not found') from None

	def fetch_lineage(self, taxid: int) -> List[str]:
		for _, md in self.genomes.values():
			if md.taxid == taxid:
				return list(md.lineage)
		raise NotFoundError(f'Taxon {taxid} not found')
