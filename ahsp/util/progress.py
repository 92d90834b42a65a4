"""Progress meters for long-running batch operations.

Batch functions such as :meth:`ahsp.sigs.calc.SignatureBuilder.build_batch` take a ``progress``
argument and create the meter themselves once the number of items is known, see
:func:`.get_progress` for the accepted values.
"""

import sys
from abc import ABC, abstractmethod
from typing import Optional, Union, Callable, TextIO, Dict, List, Iterator
from contextlib import contextmanager


#: Signature of a function which creates a progress meter given the total number of items.
ProgressFactory = Callable[..., 'AbstractProgressMeter']

ProgressArg = Union[str, bool, ProgressFactory, None]


class AbstractProgressMeter(ABC):
	"""Base class for an object which reports the number of completed items to the user.

	Instances are context managers which call :meth:`close` on exit.

	Attributes
	----------
	n
		Number of completed items.
	total
		Total number of items.
	closed
		Whether :meth:`close` has been called.
	"""
	n: int
	total: int
	closed: bool

	@abstractmethod
	def increment(self, delta: int = 1):
		"""Mark ``delta`` more items as completed."""

	def close(self):
		"""Stop displaying progress."""

	def __enter__(self):
		return self

	def __exit__(self, *args):
		self.close()

	@classmethod
	@abstractmethod
	def create(cls, total: int, *, desc: Optional[str] = None, file: Optional[TextIO] = None, **kw) -> 'AbstractProgressMeter':
		"""Create an instance.

		Parameters
		----------
		total
			Total number of items.
		desc
			Label to display next to the meter.
		file
			Stream to write to, defaults to ``sys.stderr``.
		\\**kw
			Options specific to the meter type.
		"""


class NullProgressMeter(AbstractProgressMeter):
	"""Progress meter which displays nothing."""

	def __init__(self, total: int = 0):
		self.n = 0
		self.total = total
		self.closed = False

	def increment(self, delta: int = 1):
		self.n += delta

	def close(self):
		self.closed = True

	@classmethod
	def create(cls, total: int, **kw):
		return cls(total)


class TqdmProgressMeter(AbstractProgressMeter):
	"""Displays progress with a ``tqdm`` progress bar."""

	def __init__(self, pbar):
		self.pbar = pbar
		self.closed = False

	@property
	def n(self):
		return self.pbar.n

	@property
	def total(self):
		return self.pbar.total

	def increment(self, delta: int = 1):
		self.pbar.update(delta)

	def close(self):
		self.pbar.close()
		self.closed = True

	@classmethod
	def create(cls, total: int, *, desc: Optional[str] = None, file: Optional[TextIO] = None, **kw):
		from tqdm import tqdm
		return cls(tqdm(total=total, desc=desc, file=file, **kw))


class ClickProgressMeter(AbstractProgressMeter):
	"""Displays progress with a ``click`` progress bar, used by the command line interface."""

	def __init__(self, pbar):
		self.pbar = pbar

	@property
	def n(self):
		return self.pbar.pos

	@property
	def total(self):
		return self.pbar.length

	@property
	def closed(self):
		return self.pbar.finished

	def increment(self, delta: int = 1):
		self.pbar.update(delta)

	def close(self):
		if not self.pbar.finished:
			self.pbar.render_finish()
			self.pbar.finished = True

	@classmethod
	def create(cls, total: int, *, desc: Optional[str] = None, file: Optional[TextIO] = None, **kw):
		import click
		return cls(click.progressbar(length=total, label=desc, file=sys.stderr if file is None else file, **kw))


#: Meter types which can be selected by name.
METER_TYPES: Dict[str, type] = {
	'tqdm': TqdmProgressMeter,
	'click': ClickProgressMeter,
}


def get_progress(arg: ProgressArg, total: int, **kw) -> AbstractProgressMeter:
	"""Create a progress meter.

	Parameters
	----------
	arg
		One of:

		- ``None`` or ``False``: display nothing.
		- ``True``: use ``tqdm``.
		- A key of :data:`.METER_TYPES`.
		- A factory function with the signature of :meth:`.AbstractProgressMeter.create`.
	total
		Total number of items.
	\\**kw
		Passed to the meter's factory function.
	"""
	if arg is None or arg is False:
		factory = NullProgressMeter.create
	elif arg is True:
		factory = TqdmProgressMeter.create
	elif isinstance(arg, str):
		try:
			factory = METER_TYPES[arg].create
		except KeyError:
			raise ValueError(f'Unknown progress meter type {arg!r}') from None
	elif callable(arg):
		factory = arg
	else:
		raise TypeError(f'Invalid progress argument: {arg!r}')

	return factory(total, **kw)


class RecordingProgressMeter(NullProgressMeter):
	"""Displays nothing but checks updates are consistent, for use in tests."""

	def increment(self, delta: int = 1):
		if self.closed:
			raise RuntimeError('Progress meter incremented after being closed')
		if delta < 0 or self.n + delta > self.total:
			raise ValueError(f'Invalid increment {delta} at {self.n}/{self.total}')
		self.n += delta


@contextmanager
def check_progress(*, total: Optional[int] = None, check_closed: bool = True) -> Iterator[ProgressFactory]:
	"""Check that a function creates exactly one progress meter and runs it to completion.

	Yields a factory function to pass as the ``progress`` argument. The checks are made with
	``assert`` statements on exit.

	Parameters
	----------
	total
		Expected total number of items.
	check_closed
		Check that the meter was closed.
	"""
	created: List[RecordingProgressMeter] = []

	def factory(n, **kw):
		meter = RecordingProgressMeter(n)
		created.append(meter)
		return meter

	yield factory

	assert len(created) == 1, f'Expected one progress meter, {len(created)} created'
	meter = created[0]
	assert meter.n == meter.total, 'Progress meter not completed'
	if total is not None:
		assert meter.total == total
	if check_closed:
		assert meter.closed
