"""Test ahsp.io.util."""

import os
from io import StringIO
from pathlib import Path

import pytest
import numpy as np

import ahsp.io.util as ioutil


class TestOpenCompressed:
	"""Test open_compressed()"""

	@pytest.fixture(scope='class')
	def text_data(self):
		"""Random printable characters encoded as ASCII."""
		random = np.random.RandomState()
		return random.randint(32, 127, size=1000, dtype='u1').tobytes()

	@pytest.fixture(params=[None, 'gzip'])
	def compression(self, request):
		return request.param

	@pytest.fixture()
	def text_file(self, text_data: bytes, compression: str, tmp_path: Path):
		"""Path to file with text_data written to it using open_compressed."""
		file = tmp_path / 'chars.txt'
		with ioutil.open_compressed(compression, file, 'wb') as fobj:
			fobj.write(text_data)
		return file

	@pytest.mark.parametrize('binary', [True, False])
	@pytest.mark.parametrize('auto', [True, False])
	def test_read(self, binary: bool, auto: bool, text_data: bytes, text_file: Path, compression: str):
		mode = 'rb' if binary else 'rt'

		with ioutil.open_compressed('auto' if auto else compression, text_file, mode) as fobj:
			contents = fobj.read()

		if binary:
			assert contents == text_data
		else:
			assert contents == text_data.decode('ascii')

	def test_auto_write(self, tmp_path):
		with pytest.raises(ValueError):
			ioutil.open_compressed('auto', tmp_path / 'foo.txt', 'wt')

	def test_invalid(self, tmp_path):
		with pytest.raises(ValueError):
			ioutil.open_compressed('bz3', tmp_path / 'foo.txt', 'wt')


class TestClosingIterator:
	"""Test the ClosingIterator class."""

	NLINES = 100

	@pytest.fixture
	def fobj(self):
		"""Text buffer with a number in each line."""
		buf = StringIO(''.join(f'{i}\n' for i in range(self.NLINES)))
		return buf

	@pytest.fixture
	def iterator(self, fobj):
		iterable = (int(line.strip()) for line in fobj)
		return ioutil.ClosingIterator(iterable, fobj)

	def test_close_on_finish(self, iterator, fobj):
		assert not fobj.closed and not iterator.closed
		assert list(iterator) == list(range(self.NLINES))
		assert fobj.closed and iterator.closed

	def test_context(self, iterator, fobj):
		with iterator as rval:
			assert rval is iterator
			assert not fobj.closed

		assert fobj.closed and iterator.closed


class TestAtomicWrite:

	@pytest.mark.parametrize('data', [b'binary\x00data', 'text é'])
	def test_write(self, tmp_path, data):
		path = tmp_path / 'file'
		ioutil.atomic_write(path, data)
		expected = data if isinstance(data, bytes) else data.encode('utf-8')
		assert path.read_bytes() == expected
		assert os.listdir(tmp_path) == ['file']

	def test_replace(self, tmp_path):
		path = tmp_path / 'file'
		path.write_bytes(b'old contents')
		ioutil.atomic_write(str(path), b'new')
		assert path.read_bytes() == b'new'

	def test_error(self, tmp_path):
		"""Temporary file removed on failure."""
		path = tmp_path / 'file'
		with pytest.raises(TypeError):
			ioutil.atomic_write(path, 123)
		assert os.listdir(tmp_path) == []


def test_read_lines(tmp_path):
	path = tmp_path / 'lines.txt'
	path.write_text('a\n  b  \n\nc\n')

	assert list(ioutil.read_lines(path)) == ['a', 'b', '', 'c']
	assert list(ioutil.read_lines(path, skip_empty=True)) == ['a', 'b', 'c']
	assert list(ioutil.read_lines(path, strip=False)) == ['a\n', '  b  \n', '\n', 'c\n']

	with open(path) as f:
		assert list(ioutil.read_lines(f, skip_empty=True)) == ['a', 'b', 'c']
		assert not f.closed
