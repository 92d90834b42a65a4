"""Generic code for working with sequence data.

Note that all code in this package operates on DNA sequences as sequences of
bytes containing ascii-encoded nucleotide codes.

.. data:: NUCLEOTIDES

	``bytes`` corresponding to the four DNA nucleotides. Ascii-encoded upper
	case letters ``ACGT``. Note that the order, while arbitrary, is important
	in this variable as it defines the 2-bit code assigned to each nucleotide
	when k-mers are converted to integer indices.
"""
from pathlib import Path
from typing import Union, Optional, IO, Iterable, List

import numpy as np
from Bio import SeqIO
from Bio.Seq import Seq
from attr import attrs, attrib

from ahsp.io.util import FilePath, open_compressed, ClosingIterator


# Byte representations of the four nucleotide codes in the order used for
# indexing k-mer sequences
NUCLEOTIDES = b'ACGT'

SEQ_TYPES = (str, bytes, bytearray, Seq)

#: Union of DNA sequence types accepted for signature calculation.
DNASeq = Union[SEQ_TYPES]

#: Sequence types used internally.
DNASeqBytes = Union[bytes, bytearray]

#: Code assigned to bytes which are not one of the four nucleotides.
INVALID_CODE = 255

# Byte -> 2-bit nucleotide code, upper and lower case
_CODES = np.full(256, INVALID_CODE, dtype=np.uint8)
for _i, _nuc in enumerate(NUCLEOTIDES):
	_CODES[_nuc] = _i
	_CODES[ord(chr(_nuc).lower())] = _i

_REVCOMP_TABLE = bytes.maketrans(b'ACGTacgt', b'TGCAtgca')

#: Separator inserted between records when several sequences are joined into one.
RECORD_SEPARATOR = b'N'


def seq_to_bytes(seq: DNASeq) -> DNASeqBytes:
	"""Convert generic DNA sequence to byte string representation.

	Non-ASCII characters in a ``str`` are replaced with ``?``, which is not a valid nucleotide code.
	"""
	if isinstance(seq, (bytes, bytearray)):
		return seq
	if isinstance(seq, str):
		return seq.encode('ascii', 'replace')
	if isinstance(seq, Seq):
		return bytes(seq)
	raise TypeError(f'Expected sequence type, got {type(seq)}')


def revcomp(seq: DNASeq) -> bytes:
	"""Get the reverse complement of a nucleotide sequence.

	Bytes other than ``ACGTacgt`` are left as they are (in reversed position).
	"""
	return bytes(seq_to_bytes(seq)).translate(_REVCOMP_TABLE)[::-1]


def encode_seq(seq: DNASeq) -> np.ndarray:
	"""Convert a sequence to an array of 2-bit nucleotide codes.

	Lower case is accepted. Positions which do not hold a valid nucleotide get the value
	:data:`INVALID_CODE`.

	Returns
	-------
	numpy.ndarray
		Array of dtype ``uint8`` with the same length as ``seq``.
	"""
	data = np.frombuffer(bytes(seq_to_bytes(seq)), dtype=np.uint8)
	return _CODES[data]


def count_valid(seq: DNASeq) -> int:
	"""Count the number of valid nucleotide codes (either case) in a sequence."""
	return int(np.count_nonzero(encode_seq(seq) != INVALID_CODE))


def join_seqs(seqs: Iterable[DNASeq]) -> bytes:
	"""Join several sequences into one, separated so that no k-mer spans two of them."""
	return RECORD_SEPARATOR.join(bytes(seq_to_bytes(s)) for s in seqs)


@attrs(frozen=True, slots=True)
class SequenceFile:
	"""A reference to a DNA sequence file stored in the file system.

	Contains all the information needed to read and parse the file.

	Attributes
	----------
	path
		Path to the file.
	format
		String describing the file format as interpreted by
		:func:`Bio.SeqIO.parse`, e.g. ``'fasta'``.
	compression
		String describing compression method of the file, e.g. ``'gzip'``. None
		means no compression. See :func:`ahsp.io.util.open_compressed`.
	"""
	path: Path = attrib(converter=Path)
	format: str = attrib(default='fasta')
	compression: Optional[str] = attrib(default=None)

	def open(self, mode: str = 'r', **kwargs) -> IO:
		"""
		Open a stream to the file, with compression/decompression applied
		transparently.

		Parameters
		----------
		mode : str
			Same as equivalent argument to the built-in :func:open`.
		\\**kwargs
			Additional text mode specific keyword arguments to pass to opener.
		"""
		return open_compressed(self.compression, self.path, mode, **kwargs)

	def parse(self, **kwargs) -> ClosingIterator[SeqIO.SeqRecord]:
		"""Open the file and lazily parse its contents.

		The returned iterator closes the underlying stream when it is exhausted, and may also be
		used as a context manager.

		Parameters
		----------
		\\**kwargs
			Keyword arguments to :meth:`open`.
		"""
		fobj = self.open('rt', **kwargs)

		try:
			records = SeqIO.parse(fobj, self.format)
			return ClosingIterator(records, fobj)

		except Exception:
			fobj.close()
			raise

	def read_joined(self) -> bytes:
		"""Read all records in the file and join them into a single sequence.

		See :func:`.join_seqs`.
		"""
		with self.parse() as records:
			return join_seqs(record.seq for record in records)

	@classmethod
	def from_paths(cls,
	               paths: Iterable[FilePath],
	               format: str = 'fasta',
	               compression: Optional[str] = None,
	               ) -> List['SequenceFile']:
		"""
		Create many instances at once from a collection of paths and a single
		format and compression type.
		"""
		return [cls(path, format, compression) for path in paths]
