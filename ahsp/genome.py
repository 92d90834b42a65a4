"""Descriptive metadata for genome assemblies."""

import json
from typing import Tuple, Optional, Dict, Any, Iterable

from attr import attrs, attrib

from ahsp.errors import TaxonomyError, InvalidParametersError
from ahsp.io.json import Jsonable


def _lineage_converter(value: Iterable[str]) -> Tuple[str, ...]:
	if isinstance(value, str):
		return parse_lineage(value)
	return tuple(value)


def parse_lineage(s: str, sep: str = ';') -> Tuple[str, ...]:
	"""Parse a lineage from a delimited string such as ``"Bacteria; Proteobacteria; ..."``.

	Empty terms are dropped and surrounding whitespace is removed.
	"""
	return tuple(t.strip() for t in s.split(sep) if t.strip())


def check_term(term: str) -> str:
	"""Check a taxonomy term is non-blank and return it stripped of surrounding whitespace.

	Raises
	------
	TaxonomyError
	"""
	if not isinstance(term, str):
		raise TaxonomyError(f'Taxonomy term must be a string, got {type(term).__name__}')
	stripped = term.strip()
	if not stripped:
		raise TaxonomyError('Taxonomy term must not be blank')
	return stripped


@attrs(frozen=True)
class GenomeMetadata(Jsonable):
	"""Metadata describing a single genome assembly.

	Attributes
	----------
	accession
		Unique accession of the assembly (e.g. ``'GCF_000005845.2'``).
	organism
		Organism name.
	taxid
		Taxonomy ID of the organism in the provider's taxonomy database.
	lineage
		Taxonomic lineage as a tuple of names ordered from root to leaf.
	length
		Length of the genome sequence.
	source
		Identifier of the provider the genome was obtained from (e.g. ``'ncbi'``).
	assembly_level
		Assembly level reported by the provider (``'Complete Genome'``, ``'Contig'``, ...), if known.
	extra
		Additional arbitrary JSON-compatible metadata.
	"""
	accession: str = attrib()
	organism: str = attrib()
	taxid: int = attrib(converter=int)
	lineage: Tuple[str, ...] = attrib(converter=_lineage_converter)
	length: int = attrib(converter=int)
	source: str = attrib()
	assembly_level: Optional[str] = attrib(default=None)
	extra: Optional[Dict[str, Any]] = attrib(default=None, hash=False)

	@accession.validator
	def _check_accession(self, attribute, value):
		if not isinstance(value, str) or not value.strip():
			raise ValueError('Accession must be a non-empty string')

	@extra.validator
	def _check_extra(self, attribute, value):
		if value is None:
			return
		if not isinstance(value, dict):
			raise InvalidParametersError(f'extra must be a dict, got {type(value).__name__}')
		try:
			json.dumps(value)
		except (TypeError, ValueError) as exc:
			raise InvalidParametersError(f'extra is not JSON-compatible: {exc}') from exc

	@property
	def terms(self) -> Tuple[str, ...]:
		"""Distinct non-blank lineage terms in root to leaf order."""
		seen = set()
		out = []
		for term in self.lineage:
			term = term.strip()
			if term and term not in seen:
				seen.add(term)
				out.append(term)
		return tuple(out)

	def __to_json__(self):
		data = dict(
			accession=self.accession,
			organism=self.organism,
			taxid=self.taxid,
			lineage=list(self.lineage),
			length=self.length,
			source=self.source,
		)
		if self.assembly_level is not None:
			data['assembly_level'] = self.assembly_level
		if self.extra is not None:
			data['extra'] = self.extra
		return data

	@classmethod
	def __from_json__(cls, data: Dict[str, Any]) -> 'GenomeMetadata':
		return cls(
			accession=data['accession'],
			organism=data['organism'],
			taxid=data['taxid'],
			lineage=data['lineage'],
			length=data['length'],
			source=data['source'],
			assembly_level=data.get('assembly_level'),
			extra=data.get('extra'),
		)
