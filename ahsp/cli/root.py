"""Define the root CLI command group."""

import click

from ahsp import __version__ as AHSP_VERSION
from .common import CLIContext, setup_logging, filepath, dirpath


# Top-level cli group
@click.group()
@click.option(
	'-d', '--db', 'db_path',
	type=filepath(),
	envvar='AHSP_DB_PATH',
	default='ahsp.db',
	show_default=True,
	help='Signature database file.',
)
@click.option(
	'--cache', 'cache_dir',
	type=dirpath(),
	envvar='AHSP_CACHE_DIR',
	default='genome_cache',
	show_default=True,
	help='Directory to cache downloaded genomes in.',
)
@click.option('--api-key', envvar='NCBI_API_KEY', help='NCBI API key.')
@click.option('--email', envvar='NCBI_EMAIL', help='Contact email address sent to NCBI.')
@click.option(
	'-t', '--threads',
	type=click.IntRange(min=1),
	default=4,
	show_default=True,
	help='Number of worker threads.',
)
@click.option('-v', '--verbose', count=True, help='Increase logging verbosity (may be repeated).')
@click.version_option(AHSP_VERSION, prog_name='ahsp')
@click.pass_context
def cli(ctx: click.Context, verbose: int, **kw):
	"""Build and query databases of multi-resolution genomic signatures."""
	setup_logging(verbose)

	# Allows passing a genome source through the "obj" argument of Click's main()
	source = ctx.obj.get('source') if isinstance(ctx.obj, dict) else None
	ctx.obj = CLIContext(ctx, source=source)
