"""Binary encoding of signatures for storage.

An encoded record consists of:

- The magic bytes :data:`MAGIC`.
- The format version as a little-endian ``uint16``.
- The length of the header in bytes as a little-endian ``uint32``.
- The header, UTF-8 encoded JSON holding the signature id, genome metadata and the
  :class:`ahsp.kmers.SketchSpec` and length of both sketches.
- The hash values of the macro sketch followed by those of the meso sketch, as little-endian
  ``uint64``.
"""

import json
import struct
from typing import Dict, Any

import numpy as np

from ahsp.sigs.base import Sketch, MultiResolutionSignature, HASH_DTYPE
from ahsp.kmers import SketchSpec
from ahsp.genome import GenomeMetadata
from ahsp.errors import AHSPError, SerializationError
import ahsp.io.json as ajson


MAGIC = b'AHSP'

#: Format version written by :func:`.encode_signature`.
CURRENT_FMT_VERSION = 1

#: Format versions :func:`.decode_signature` is able to read.
SUPPORTED_FMT_VERSIONS = frozenset([1])

_PREFIX = struct.Struct('<4sHI')

_WIRE_DTYPE = np.dtype('<u8')


def _sketch_header(sketch: Sketch) -> Dict[str, Any]:
	return dict(spec=ajson.to_json(sketch.spec), length=len(sketch))


def encode_signature(sig: MultiResolutionSignature) -> bytes:
	"""Encode a signature in the current binary format.

	Raises
	------
	SerializationError
		If the signature's id or metadata can't be represented as JSON.
	"""
	try:
		header = dict(
			id=sig.id,
			metadata=ajson.to_json(sig.metadata),
			macro=_sketch_header(sig.macro),
			meso=_sketch_header(sig.meso),
		)
		header_bytes = json.dumps(header, separators=(',', ':')).encode('utf-8')
	except (TypeError, ValueError) as exc:
		raise SerializationError(f'Failed to encode header of signature {sig.id!r}: {exc}') from exc

	return b''.join([
		_PREFIX.pack(MAGIC, CURRENT_FMT_VERSION, len(header_bytes)),
		header_bytes,
		sig.macro.hashes.astype(_WIRE_DTYPE).tobytes(),
		sig.meso.hashes.astype(_WIRE_DTYPE).tobytes(),
	])


def read_format_version(data: bytes) -> int:
	"""Get the format version of an encoded record without decoding it.

	Raises
	------
	SerializationError
		If the data is too short or does not start with the magic bytes.
	"""
	if len(data) < _PREFIX.size:
		raise SerializationError(f'Record truncated ({len(data)} bytes)')
	magic, version, _ = _PREFIX.unpack_from(data)
	if magic != MAGIC:
		raise SerializationError(f'Invalid record magic bytes {magic!r}')
	return version


def decode_signature(data: bytes) -> MultiResolutionSignature:
	"""Decode a signature encoded with :func:`.encode_signature`.

	Raises
	------
	SerializationError
		If the data is truncated or corrupt, or has an unsupported format version.
	"""
	data = bytes(data)
	version = read_format_version(data)
	if version not in SUPPORTED_FMT_VERSIONS:
		raise SerializationError(f'Unsupported record format version {version}')

	_, _, header_len = _PREFIX.unpack_from(data)
	offset = _PREFIX.size
	if len(data) < offset + header_len:
		raise SerializationError('Record truncated within header')

	try:
		header = json.loads(data[offset:offset + header_len].decode('utf-8'))
		metadata = ajson.from_json(header['metadata'], GenomeMetadata)
		macro_spec = ajson.from_json(header['macro']['spec'], SketchSpec)
		meso_spec = ajson.from_json(header['meso']['spec'], SketchSpec)
		macro_len = int(header['macro']['length'])
		meso_len = int(header['meso']['length'])
		sig_id = header['id']
	except (ValueError, KeyError, TypeError, AHSPError) as exc:
		raise SerializationError(f'Invalid record header: {exc}') from exc

	offset += header_len
	expected = offset + (macro_len + meso_len) * _WIRE_DTYPE.itemsize
	if len(data) != expected:
		raise SerializationError(f'Expected record of {expected} bytes, got {len(data)}')

	hashes = np.frombuffer(data, dtype=_WIRE_DTYPE, offset=offset).astype(HASH_DTYPE)

	try:
		macro = Sketch(macro_spec, hashes[:macro_len])
		meso = Sketch(meso_spec, hashes[macro_len:])
		return MultiResolutionSignature(sig_id, macro, meso, metadata)
	except AHSPError as exc:
		raise SerializationError(f'Invalid record contents: {exc}') from exc
