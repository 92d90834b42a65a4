"""Utility code that doesn't fit anywhere else."""

from typing import Iterator


def chunk_slices(n: int, size: int) -> Iterator[slice]:
	"""Iterate over slice objects which split a range of length ``n`` into chunks of size ``size``.

	The last slice is truncated so that it ends at ``n``.

	Raises
	------
	ValueError
		If ``size`` is not positive.
	"""
	if size <= 0:
		raise ValueError('Size must be positive')

	for start in range(0, n, size):
		yield slice(start, min(start + size, n))
