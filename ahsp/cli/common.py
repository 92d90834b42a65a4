import logging
from typing import Optional, Sequence, Dict, Any, Iterator, Iterable, Union, List, TextIO
from pathlib import Path
from contextlib import contextmanager

import click

from ahsp.manager import ManagerConfig, DatabaseManager
from ahsp.db.sigdb import SignatureDatabase
from ahsp.source.base import GenomeSource
from ahsp.errors import AHSPError
from ahsp.seq import SequenceFile
from ahsp.io.util import FilePath, read_lines


#: Key of the database info entry holding the sketch parameters the database was created with.
SKETCH_PARAMS_KEY = 'sketch_params'

LOG_FORMAT = '%(asctime)s %(levelname)s %(name)s: %(message)s'


def setup_logging(verbosity: int):
	"""Configure logging to stderr, with level determined by number of ``-v`` flags."""
	if verbosity >= 2:
		level = logging.DEBUG
	elif verbosity == 1:
		level = logging.INFO
	else:
		level = logging.WARNING
	logging.basicConfig(level=level, format=LOG_FORMAT)


@contextmanager
def handle_errors() -> Iterator[None]:
	"""Context manager which converts package exceptions to :class:`click.ClickException`."""
	try:
		yield
	except AHSPError as exc:
		raise click.ClickException(str(exc)) from exc


class CLIContext:
	"""Click context object for the AHSP CLI.

	Opens the database and creates the manager lazily the first time they are requested.

	Attributes
	----------
	root_context
		Click context object from root command group.
	db_path
		Path to database file, from root command group.
	cache_dir
		Path to genome cache directory, from root command group.
	source
		Genome source to use in place of the default NCBI source.
	"""
	root_context: click.Context
	db_path: Path
	cache_dir: Path
	source: Optional[GenomeSource]

	def __init__(self, root_context: click.Context, source: Optional[GenomeSource] = None):
		self.root_context = root_context
		params = root_context.params
		self.db_path = Path(params['db_path'])
		self.cache_dir = Path(params['cache_dir'])
		self.api_key = params['api_key']
		self.email = params['email']
		self.threads = params['threads']
		self.source = source

		self._db = None
		self._manager = None

		root_context.call_on_close(self.close)

	def close(self):
		if self._manager is not None:
			self._manager.close()
			self._manager = None
		if self._db is not None:
			self._db.close()
			self._db = None

	def get_db(self, create: bool = False) -> SignatureDatabase:
		"""Get the open signature database.

		Parameters
		----------
		create
			Create the database if it does not exist. Otherwise, raise an error.
		"""
		if self._db is None:
			if not create and not self.db_path.exists():
				raise click.ClickException(f'Database {self.db_path} does not exist, create it with the "init" command.')
			with handle_errors():
				self._db = SignatureDatabase.open(self.db_path, create=create)
		return self._db

	def get_manager(self, create: bool = False, **config_kw) -> DatabaseManager:
		"""Get a manager for the database.

		Sketch parameters stored in the database take precedence over defaults but not over values
		in ``config_kw``.
		"""
		if self._manager is None:
			db = self.get_db(create=create)

			with handle_errors():
				stored = db.get_info(SKETCH_PARAMS_KEY) or dict()
				for key, value in stored.items():
					config_kw.setdefault(key, value)

				config = ManagerConfig(
					db_path=self.db_path,
					cache_dir=self.cache_dir,
					threads=self.threads,
					api_key=self.api_key,
					email=self.email,
					**config_kw,
				)
				self._manager = DatabaseManager(config, source=self.source, database=db)

		return self._manager


def sketch_params(config: ManagerConfig) -> Dict[str, Any]:
	"""Get the sketch parameters of a configuration to store in the database."""
	return dict(
		macro_k=config.macro_k,
		meso_k=config.meso_k,
		sketch_size=config.sketch_size,
		hash_seed=config.hash_seed,
	)


################################################################################
# Shared CLI parameters
################################################################################

def filepath(**kw) -> click.Path:
	"""Click Path argument type accepting files only."""
	kw.setdefault('path_type', Path)
	return click.Path(file_okay=True, dir_okay=False, **kw)


def dirpath(**kw) -> click.Path:
	"""Click Path argument type accepting directories only."""
	kw.setdefault('path_type', Path)
	return click.Path(file_okay=False, dir_okay=True, **kw)


def listfile_param(*param: str, **kw):
	"""Returns decorator to add param for file listing input paths."""
	return click.option(*param, type=click.File('r'), **kw)


def listfile_dir_param(*param: str, file_metavar=None, **kw):
	"""Returns decorator to add param for parent directory of paths in list file."""
	kw.setdefault('default', '.')
	if file_metavar is not None:
		kw.setdefault('help', f'Parent directory of paths in {file_metavar}.')

	return click.option(*param, type=dirpath(), **kw)


def get_sequence_files(explicit: Optional[Iterable[FilePath]] = None,
                       listfile: Union[None, FilePath, TextIO] = None,
                       listfile_dir: Optional[str] = None,
                       ) -> List[SequenceFile]:
	"""Get list of sequence files from either explicit paths or a file listing them.

	Parameters
	----------
	explicit
		List of paths given explicitly, such as with a positional argument.
	listfile
		File listing sequence files, one per line.
	listfile_dir
		Parent directory for files in ``listfile``.
	"""
	if explicit:
		paths = list(map(Path, explicit))
	elif listfile is not None:
		paths = [Path(listfile_dir or '.') / line for line in read_lines(listfile, skip_empty=True)]
	else:
		paths = []

	return SequenceFile.from_paths(paths, 'fasta', 'auto')


def progress_param():
	"""Click argument to show progress meter."""
	return click.option('--progress/--no-progress', default=True, help="Show/don't show progress meter.")


def max_results_param():
	return click.option(
		'-n', '--max', 'max_results',
		type=click.IntRange(min=1),
		default=10,
		show_default=True,
		help='Maximum number of genomes to download.',
	)


def replace_param():
	return click.option('--replace', is_flag=True, help='Replace signatures already in the database.')


################################################################################
# Output
################################################################################

def print_table(rows: Sequence[Sequence], colsep: str=' ', left: str='', right: str=''):
	"""Print a basic table."""

	echo = lambda s: click.echo(s, nl=False)

	rows = [list(map(str, row)) for row in rows]
	if not rows:
		return
	ncol = max(map(len, rows))

	widths = [0] * ncol
	for row in rows:
		for i, val in enumerate(row):
			widths[i] = max(widths[i], len(val))

	for row in rows:
		echo(left)

		for i, val in enumerate(row):
			echo(val.ljust(widths[i]) if i < ncol - 1 else val)

			if i < ncol - 1:
				echo(colsep)

		echo(right)
		echo('\n')


def print_report(report):
	"""Print summary of a :class:`ahsp.manager.UpdateReport`."""
	click.echo(f'Added {len(report.added)} genome(s), skipped {len(report.skipped)} already present.')
	for id_ in report.added:
		click.echo(f'  + {id_}')
	for item in report.failed:
		click.echo(f'Failed ({item.stage}) {item.id}: {item.error}', err=True)
