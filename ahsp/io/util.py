"""Utility code for reading/writing data files."""

import os
import tempfile
from typing import Union, Optional, IO, ContextManager, Iterable, TypeVar
from contextlib import nullcontext

#: Alias for types which can represent a file system path
FilePath = Union[str, os.PathLike]

T = TypeVar('T')

COMPRESSED_OPENERS = {None: open}

GZIP_MAGIC = b'\x1f\x8b'


def _compressed_opener(compression):
	"""Decorator to register opener functions for compression types."""
	def decorator(func):
		COMPRESSED_OPENERS[compression] = func
		return func
	return decorator


@_compressed_opener('gzip')
def _open_gzip(path, mode, **kwargs):
	"""Opener for gzip-compressed files."""
	import gzip

	if mode is None:
		mode = 'rt'

	# gzip defaults to binary mode, change to text instead of not specified
	if mode[-1] not in 'tb':
		mode += 't'

	return gzip.open(path, mode=mode, **kwargs)


@_compressed_opener('auto')
def _open_auto(path, mode, **kwargs):
	"""Opener which detects gzip compression from the file contents (read modes only)."""
	if mode is not None and mode[0] != 'r':
		raise ValueError('Compression must be specified explicitly when writing')

	with open(path, 'rb') as f:
		magic = f.read(2)

	opener = COMPRESSED_OPENERS['gzip' if magic == GZIP_MAGIC else None]
	return opener(path, mode=mode, **kwargs)


def open_compressed(compression: Optional[str],
                    path: FilePath,
                    mode: Optional[str] = None,
                    **kwargs,
                    ) -> IO:
	"""Open a file with compression method specified by a string.

	Parameters
	----------
	compression : str
		Compression method. None is no compression, ``'auto'`` detects gzip on read. Keys of
		:data:`COMPRESSED_OPENERS` are the allowed values.
	path
		Path of file to open. May be string or path-like object.
	mode : str
		Mode to open file in - same as in :func:`open`.
	\\**kwargs
		Additional text-specific keyword arguments identical to the following :func:`open`
		arguments: ``encoding``, ``errors``, and ``newlines``.
	"""

	try:
		opener = COMPRESSED_OPENERS[compression]

	except KeyError:
		raise ValueError(f'Unknown compression type {compression!r}') from None

	if mode is None:
		mode = 'r'

	return opener(os.fsdecode(path), mode=mode, **kwargs)


class ClosingIterator(Iterable[T]):
	"""Wraps an iterator which reads from a stream, closes the stream when finished.

	Used to wrap return values from functions which do some sort of lazy IO
	operation (specifically :func:`Bio.SeqIO.parse`) and return an iterator
	which reads from a stream every time ``next()`` is called on it. May also be
	used as a context manager which closes the stream on exit.

	Attributes
	----------
	fobj
		The underlying file-like object or stream which the instance is
		responsible for closing
	iterator
		The iterator which the instance wraps.
	"""

	def __init__(self, iterable, fobj):
		self.iterator = iter(iterable)
		self.fobj = fobj

	def __iter__(self):
		return self

	def __next__(self):
		try:
			return next(self.iterator)

		except StopIteration:
			# Close when iterator runs out
			self.close()
			raise

	def close(self):
		"""Close the stream."""
		self.fobj.close()

	@property
	def closed(self) -> bool:
		return self.fobj.closed

	def __enter__(self):
		return self

	def __exit__(self, *args):
		self.close()


def maybe_open(file_or_path: Union[FilePath, IO], mode: str = 'r', **open_kw) -> ContextManager[IO]:
	"""Open a file given a file path as an argument, but pass existing file objects though.

	Returns a context manager which gives an open file object on enter and closes it on exit only
	if it was opened by this function.
	"""
	try:
		path = os.fspath(file_or_path)
	except TypeError:
		return nullcontext(file_or_path)
	else:
		return open(path, mode, **open_kw)


def atomic_write(path: FilePath, data: Union[bytes, str]):
	"""Write data to a file so that readers never observe a partially written file.

	Data is written to a temporary file in the same directory, flushed to disk and then moved
	into place with :func:`os.replace`. Concurrent writers to the same path each produce a complete
	file, the last one to finish wins.
	"""
	path = os.fspath(path)
	dirname, basename = os.path.split(path)

	if isinstance(data, str):
		data = data.encode('utf-8')

	fd, tmp_path = tempfile.mkstemp(prefix=f'.{basename}.', suffix='.tmp', dir=dirname or '.')
	try:
		with os.fdopen(fd, 'wb') as f:
			f.write(data)
			f.flush()
			os.fsync(f.fileno())
		os.replace(tmp_path, path)

	except BaseException:
		try:
			os.unlink(tmp_path)
		except FileNotFoundError:
			pass
		raise


def read_lines(file_or_path: Union[FilePath, IO], strip: bool = True, skip_empty: bool = False) -> Iterable[str]:
	"""Iterate over lines in text file.

	Parameters
	----------
	file_or_path
		A path-like object or open file object.
	strip
		Strip whitespace from lines.
	skip_empty
		Omit empty lines.
	"""
	with maybe_open(file_or_path) as f:
		for line in f:
			if strip:
				line = line.strip()
			if skip_empty and not line:
				continue
			yield line
