"""Download genomes from NCBI through the Entrez E-utilities."""

import io
import gzip
import json
import time
import logging
import threading
import urllib.error
import urllib.parse
import urllib.request
from http.client import HTTPException
from typing import Optional, List, Tuple, Dict, Any, Callable
from xml.parsers.expat import ExpatError

from Bio import Entrez, SeqIO

from .base import GenomeSource
from ahsp.genome import GenomeMetadata
from ahsp.seq import join_seqs
from ahsp.errors import NetworkError, ProviderProtocolError, NotFoundError, InvalidParametersError
from ahsp import __version__


_LOG = logging.getLogger(__name__)


EUTILS_BASE = 'https://eutils.ncbi.nlm.nih.gov/entrez/eutils'

#: Maximum request rates allowed by NCBI without and with an API key (requests per second).
DEFAULT_RATE_LIMIT = 3.0
API_KEY_RATE_LIMIT = 10.0

#: Name sent to NCBI in the ``tool`` parameter.
TOOL_NAME = 'ahsp'

USER_AGENT = f'ahsp/{__version__}'

#: HTTP status codes which indicate a transient failure.
TRANSIENT_HTTP_CODES = frozenset([408, 429, 500, 502, 503, 504])


class RateLimiter:
	"""Spaces out calls to :meth:`wait` so that at most ``rate`` of them return per second.

	Thread-safe.
	"""

	def __init__(self, rate: float):
		if rate <= 0:
			raise InvalidParametersError(f'Rate must be positive, got {rate}')
		self.interval = 1.0 / rate
		self._next = 0.0
		self._lock = threading.Lock()

	def wait(self):
		with self._lock:
			now = time.monotonic()
			delay = self._next - now
			self._next = max(now, self._next) + self.interval
		if delay > 0:
			time.sleep(delay)


def _https_url(ftp_path: str) -> str:
	if ftp_path.startswith('ftp://'):
		return 'https://' + ftp_path[len('ftp://'):]
	return ftp_path


def genomic_fasta_url(ftp_path: str) -> str:
	"""Get the URL of the genomic FASTA file of an assembly from its FTP directory path."""
	ftp_path = _https_url(ftp_path.rstrip('/'))
	name = ftp_path.rsplit('/', 1)[-1]
	return f'{ftp_path}/{name}_genomic.fna.gz'


def parse_fasta_bytes(data: bytes) -> Tuple[bytes, int]:
	"""Parse (possibly gzipped) FASTA data and join its records into one sequence.

	Returns
	-------
	Tuple[bytes, int]
		Joined sequence and the total length of all records.
	"""
	if data[:2] == b'\x1f\x8b':
		data = gzip.decompress(data)

	records = list(SeqIO.parse(io.StringIO(data.decode('ascii')), 'fasta'))
	if not records:
		raise ValueError('No FASTA records found')

	total = sum(len(r.seq) for r in records)
	return join_seqs(r.seq for r in records), total


class EntrezGenomeSource(GenomeSource):
	"""Genome source which queries the NCBI assembly and taxonomy databases.

	Requests are rate limited client-side to the maximum rate NCBI permits (higher if an API key
	is given). Search and summary requests use the JSON output mode of the E-utilities, taxonomy
	records are parsed with :func:`Bio.Entrez.read`.

	Parameters
	----------
	api_key
		NCBI API key.
	email
		Contact email address sent with requests.
	timeout
		Timeout of each HTTP request in seconds.
	base_url
		Base URL of the E-utilities.
	rate_limit
		Maximum requests per second. Defaults to :data:`DEFAULT_RATE_LIMIT` or
		:data:`API_KEY_RATE_LIMIT` depending on whether ``api_key`` is given.
	urlopen
		Function used to make requests, with the same signature as :func:`urllib.request.urlopen`.
	"""
	name = 'ncbi'

	def __init__(self,
	             api_key: Optional[str] = None,
	             email: Optional[str] = None,
	             timeout: float = 60.0,
	             base_url: str = EUTILS_BASE,
	             rate_limit: Optional[float] = None,
	             urlopen: Optional[Callable] = None,
	             ):
		if timeout <= 0:
			raise InvalidParametersError(f'Timeout must be positive, got {timeout}')

		self.api_key = api_key
		self.email = email
		self.timeout = timeout
		self.base_url = base_url.rstrip('/')

		if rate_limit is None:
			rate_limit = DEFAULT_RATE_LIMIT if api_key is None else API_KEY_RATE_LIMIT
		self._limiter = RateLimiter(rate_limit)
		self._urlopen = urllib.request.urlopen if urlopen is None else urlopen

		self._summaries = dict()
		self._summaries_lock = threading.Lock()

	def __repr__(self):
		return f'<{type(self).__name__} {self.base_url}>'

	def _get(self, url: str) -> bytes:
		"""Make a rate-limited GET request and return the response body."""
		self._limiter.wait()
		request = urllib.request.Request(url, headers={'User-Agent': USER_AGENT})
		_LOG.debug('GET %s', url)

		try:
			with self._urlopen(request, timeout=self.timeout) as response:
				return response.read()

		except urllib.error.HTTPError as exc:
			if exc.code == 404:
				raise NotFoundError(f'Not found: {url}') from exc
			if exc.code in TRANSIENT_HTTP_CODES:
				raise NetworkError(f'NCBI request failed with status {exc.code}: {url}') from exc
			raise ProviderProtocolError(f'NCBI request failed with status {exc.code}: {url}') from exc

		except (urllib.error.URLError, HTTPException, OSError) as exc:
			raise NetworkError(f'NCBI request failed: {exc}') from exc

	def _eutil(self, util: str, **params) -> bytes:
		params = {k: v for k, v in params.items() if v is not None}
		params['tool'] = TOOL_NAME
		if self.email:
			params['email'] = self.email
		if self.api_key:
			params['api_key'] = self.api_key

		url = f'{self.base_url}/{util}.fcgi?{urllib.parse.urlencode(params)}'
		return self._get(url)

	def _eutil_json(self, util: str, **params) -> Dict[str, Any]:
		data = self._eutil(util, retmode='json', **params)
		try:
			result = json.loads(data.decode('utf-8'))
		except ValueError as exc:
			raise ProviderProtocolError(f'Invalid JSON response from {util}: {exc}') from exc
		if not isinstance(result, dict):
			raise ProviderProtocolError(f'Unexpected response from {util}')
		return result

	def _esearch(self, db: str, term: str, retmax: int) -> List[str]:
		result = self._eutil_json('esearch', db=db, term=term, retmax=retmax)
		try:
			esr = result['esearchresult']
			if 'ERROR' in esr:
				raise ProviderProtocolError(f'esearch error: {esr["ERROR"]}')
			return [str(uid) for uid in esr['idlist']]
		except (KeyError, TypeError) as exc:
			raise ProviderProtocolError(f'Malformed esearch response: {exc}') from exc

	def _esummary(self, db: str, uids: List[str]) -> List[Dict[str, Any]]:
		if not uids:
			return []
		result = self._eutil_json('esummary', db=db, id=','.join(uids))
		try:
			docs = result['result']
			return [docs[uid] for uid in docs['uids']]
		except (KeyError, TypeError) as exc:
			raise ProviderProtocolError(f'Malformed esummary response: {exc}') from exc

	def _remember(self, docs: List[Dict[str, Any]]):
		with self._summaries_lock:
			for doc in docs:
				acc = doc.get('assemblyaccession')
				if acc:
					self._summaries[acc] = doc

	def search(self, query: str, limit: int) -> List[str]:
		if limit < 0:
			raise InvalidParametersError(f'Limit must be non-negative, got {limit}')
		if limit == 0:
			return []

		uids = self._esearch('assembly', f'({query}) AND latest[filter]', limit)
		docs = self._esummary('assembly', uids[:limit])
		self._remember(docs)

		accessions = [doc['assemblyaccession'] for doc in docs if doc.get('assemblyaccession')]
		_LOG.info('Search for %r returned %d assemblies', query, len(accessions))
		return accessions

	def assembly_summary(self, accession: str) -> Dict[str, Any]:
		"""Get the assembly database summary document of an accession.

		Raises
		------
		NotFoundError
		"""
		with self._summaries_lock:
			doc = self._summaries.get(accession)
		if doc is not None:
			return doc

		uids = self._esearch('assembly', f'{accession}[Assembly Accession]', 1)
		if not uids:
			raise NotFoundError(f'Assembly {accession} not found')

		docs = self._esummary('assembly', uids)
		if not docs:
			raise NotFoundError(f'Assembly {accession} not found')
		self._remember(docs)
		return docs[0]

	def fetch_lineage(self, taxid: int) -> List[str]:
		data = self._eutil('efetch', db='taxonomy', id=str(taxid), retmode='xml')

		try:
			records = Entrez.read(io.BytesIO(data))
		except (ValueError, ExpatError, RuntimeError) as exc:
			raise ProviderProtocolError(f'Invalid taxonomy record for taxid {taxid}: {exc}') from exc

		if not records:
			raise NotFoundError(f'Taxon {taxid} not found')

		try:
			record = records[0]
			lineage = [str(t['ScientificName']) for t in record.get('LineageEx', [])]
			if not lineage and record.get('Lineage'):
				lineage = [t.strip() for t in str(record['Lineage']).split(';') if t.strip()]
			lineage.append(str(record['ScientificName']))
		except (KeyError, TypeError) as exc:
			raise ProviderProtocolError(f'Malformed taxonomy record for taxid {taxid}: {exc}') from exc

		return lineage

	def fetch(self, accession: str) -> Tuple[bytes, GenomeMetadata]:
		doc = self.assembly_summary(accession)

		try:
			ftp_path = doc.get('ftppath_refseq') or doc.get('ftppath_genbank')
			taxid = int(doc['taxid'])
			organism = doc.get('organism') or doc['speciesname']
		except (KeyError, TypeError, ValueError) as exc:
			raise ProviderProtocolError(f'Malformed assembly summary for {accession}: {exc}') from exc

		if not ftp_path:
			raise NotFoundError(f'No sequence files available for assembly {accession}')

		lineage = self.fetch_lineage(taxid)

		_LOG.info('Downloading genome %s', accession)
		data = self._get(genomic_fasta_url(ftp_path))

		try:
			seq, length = parse_fasta_bytes(data)
		except (ValueError, OSError, EOFError) as exc:
			raise ProviderProtocolError(f'Invalid sequence data for {accession}: {exc}') from exc

		extra = dict()
		for key in ['assemblyname', 'submissiondate', 'speciesname']:
			if doc.get(key):
				extra[key] = doc[key]

		metadata = GenomeMetadata(
			accession=accession,
			organism=organism,
			taxid=taxid,
			lineage=lineage,
			length=length,
			source=self.name,
			assembly_level=doc.get('assemblylevel') or None,
			extra=extra or None,
		)
		return seq, metadata
