"""Tools for testing CLI."""

from typing import Optional, Sequence

from click.testing import CliRunner, Result

from .root import cli


DEFAULT_ENV = dict(
	# Ensure these are unset by default in tests.
	AHSP_DB_PATH=None,
	AHSP_CACHE_DIR=None,
	NCBI_API_KEY=None,
	NCBI_EMAIL=None,
)


def default_runner(**kw) -> CliRunner:
	"""Get a CliRunner instance with altered default settings."""
	kw.setdefault('env', DEFAULT_ENV)
	return CliRunner(**kw)


def invoke_cli(args: Sequence,
               runner: Optional[CliRunner] = None,
               source=None,
               success: Optional[bool] = True,
               **kw,
               ) -> Result:
	"""Invoke CLI in test context, using different defaults than base Click method.

	Parameters
	----------
	args
		Command line arguments, converted to strings.
	runner
		Runner to use. Defaults to :func:`default_runner`.
	source
		Genome source to use in place of NCBI.
	success
		Assert that the command exited with status zero (True) or nonzero (False). None to not
		check.
	\\**kw
		Additional keyword arguments to :meth:`click.testing.CliRunner.invoke`.
	"""
	if runner is None:
		runner = default_runner()

	kw.setdefault('catch_exceptions', False)
	if source is not None:
		kw['obj'] = dict(source=source)

	args = list(map(str, args))
	result = runner.invoke(cli, args, **kw)

	if success is not None:
		if success:
			assert result.exit_code == 0, result.output
		else:
			assert result.exit_code != 0, result.output

	return result
