"""Abstract interface for genome providers."""

from abc import ABC, abstractmethod
from typing import List, Tuple

from ahsp.genome import GenomeMetadata


class GenomeSource(ABC):
	"""Abstract base class for a remote provider of genome assemblies.

	Implementations must be safe to call from multiple threads. Network failures are raised as
	:exc:`ahsp.errors.NetworkError` (retryable), malformed responses as
	:exc:`ahsp.errors.ProviderProtocolError` and unknown accessions as
	:exc:`ahsp.errors.NotFoundError`. Implementations do not retry failed requests.

	Attributes
	----------
	name
		Identifier of the provider, used as :attr:`ahsp.genome.GenomeMetadata.source`.
	"""
	name: str

	@abstractmethod
	def search(self, query: str, limit: int) -> List[str]:
		"""Search for assemblies matching a free-text query.

		Parameters
		----------
		query
			Query string, e.g. an organism name.
		limit
			Maximum number of results.

		Returns
		-------
		List[str]
			Accessions of matching assemblies, at most ``limit``. Empty if there are no matches.
		"""

	@abstractmethod
	def fetch(self, accession: str) -> Tuple[bytes, GenomeMetadata]:
		"""Download the sequence and metadata of an assembly.

		Returns
		-------
		Tuple[bytes, GenomeMetadata]
			Sequence as ascii-encoded bytes (multiple records joined with
			:func:`ahsp.seq.join_seqs`), and metadata.
		"""

	@abstractmethod
	def fetch_lineage(self, taxid: int) -> List[str]:
		"""Get the taxonomic lineage of a taxon as a list of names, from root to the taxon itself."""
