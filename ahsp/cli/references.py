import sys
from typing import List, Optional, TextIO
from pathlib import Path

import click

from . import common
from .root import cli
from ahsp.kmers import DEFAULT_HASH_SEED
import ahsp.io.json as ajson


def _progress(progress: bool):
	return 'click' if progress else None


@cli.command(no_args_is_help=True)
@click.argument('query')
@common.max_results_param()
@click.option('--macro-k', type=click.IntRange(1, 32), default=21, show_default=True, help='K-mer length of coarse sketch.')
@click.option('--meso-k', type=click.IntRange(1, 32), default=11, show_default=True, help='K-mer length of fine sketch.')
@click.option('--sketch-size', type=click.IntRange(min=1), default=1000, show_default=True, help='Number of hashes per sketch.')
@click.option('--seed', 'hash_seed', type=click.IntRange(min=0), default=DEFAULT_HASH_SEED, show_default=True, help='Hash seed.')
@common.progress_param()
@click.pass_obj
def init(ctxobj: common.CLIContext,
         query: str,
         max_results: int,
         macro_k: int,
         meso_k: int,
         sketch_size: int,
         hash_seed: int,
         progress: bool,
         ):
	"""Create a new database from genomes matching QUERY."""
	db = ctxobj.get_db(create=True)

	with common.handle_errors():
		if not db.is_empty():
			raise click.ClickException(f'Database {ctxobj.db_path} already contains signatures, use the "add" command.')

		manager = ctxobj.get_manager(
			create=True,
			macro_k=macro_k,
			meso_k=meso_k,
			sketch_size=sketch_size,
			hash_seed=hash_seed,
		)
		db.set_info(common.SKETCH_PARAMS_KEY, common.sketch_params(manager.config))
		report = manager.update_references(query, max_results, progress=_progress(progress))

	common.print_report(report)


@cli.command(no_args_is_help=True)
@click.argument('query')
@common.max_results_param()
@common.replace_param()
@common.progress_param()
@click.pass_obj
def add(ctxobj: common.CLIContext, query: str, max_results: int, replace: bool, progress: bool):
	"""Add genomes matching QUERY to an existing database."""
	manager = ctxobj.get_manager()

	with common.handle_errors():
		report = manager.update_references(query, max_results, replace=replace, progress=_progress(progress))

	common.print_report(report)


@cli.command(name='add-files', no_args_is_help=True)
@click.argument('files', nargs=-1, type=common.filepath(exists=True), metavar='FILES...')
@common.listfile_param('-f', '--files-from', 'listfile', metavar='LISTFILE', help='File containing paths to genome files, one per line.')
@common.listfile_dir_param('--ldir', file_metavar='LISTFILE')
@click.option('-l', '--lineage', required=True, help='Lineage of the genomes, names separated by ";" from root to leaf.')
@click.option('--organism', help='Organism name. Defaults to the last lineage name.')
@click.option('--taxid', type=int, default=0, help='Taxonomy ID.')
@common.replace_param()
@common.progress_param()
@click.pass_obj
def add_files(ctxobj: common.CLIContext,
              files: List[Path],
              listfile: Optional[TextIO],
              ldir: str,
              lineage: str,
              organism: Optional[str],
              taxid: int,
              replace: bool,
              progress: bool,
              ):
	"""Add genomes from local FASTA files (optionally gzipped).

	The ID of each genome is its file name minus extensions. The database is created if it does not
	exist.
	"""
	if bool(files) == (listfile is not None):
		raise click.UsageError('Give either FILES or -f/--files-from, but not both.')

	seqfiles = common.get_sequence_files(files, listfile, ldir)
	manager = ctxobj.get_manager(create=True)

	with common.handle_errors():
		if manager.db.get_info(common.SKETCH_PARAMS_KEY) is None:
			manager.db.set_info(common.SKETCH_PARAMS_KEY, common.sketch_params(manager.config))
		report = manager.add_files(
			seqfiles,
			lineage,
			organism=organism,
			taxid=taxid,
			replace=replace,
			progress=_progress(progress),
		)

	common.print_report(report)


@cli.command(name='list')
@click.option('-i', '--ids', is_flag=True, help='Print IDs only, one per line.')
@click.pass_obj
def list_cmd(ctxobj: common.CLIContext, ids: bool):
	"""List signatures in the database."""
	db = ctxobj.get_db()

	with common.handle_errors():
		if ids:
			for id_ in db.list_ids():
				click.echo(id_)
			return

		rows = [
			(sig.id, sig.metadata.organism, sig.metadata.assembly_level or '')
			for sig in db.iter_signatures(errors='skip')
		]

	common.print_table(rows, colsep='  ')
	click.echo(f'{len(rows)} signature(s)', err=True)


@cli.command(no_args_is_help=True)
@click.argument('term')
@click.pass_obj
def search(ctxobj: common.CLIContext, term: str):
	"""Find signatures whose lineage contains TERM exactly."""
	db = ctxobj.get_db()

	with common.handle_errors():
		sigs = db.search_by_taxonomy(term)

	common.print_table([(sig.id, sig.metadata.organism) for sig in sigs], colsep='  ')
	click.echo(f'{len(sigs)} match(es)', err=True)


@cli.command(no_args_is_help=True)
@click.argument('id')
@click.option('-j', '--json', 'as_json', is_flag=True, help='Write output in JSON format.')
@click.pass_obj
def show(ctxobj: common.CLIContext, id: str, as_json: bool):
	"""Show the metadata and sketch parameters of a signature."""
	db = ctxobj.get_db()

	with common.handle_errors():
		sig = db.get_signature(id)

	if as_json:
		data = dict(
			id=sig.id,
			metadata=sig.metadata,
			macro=dict(spec=sig.macro.spec, length=len(sig.macro)),
			meso=dict(spec=sig.meso.spec, length=len(sig.meso)),
		)
		ajson.dump(data, sys.stdout, indent=2)
		click.echo()
		return

	md = sig.metadata
	rows = [
		('ID:', sig.id),
		('Accession:', md.accession),
		('Organism:', md.organism),
		('Taxonomy ID:', md.taxid),
		('Lineage:', '; '.join(md.lineage)),
		('Length:', md.length),
		('Source:', md.source),
		('Assembly level:', md.assembly_level or '<none>'),
		('Macro sketch:', f'k={sig.macro.spec.k}, {len(sig.macro)} hashes'),
		('Meso sketch:', f'k={sig.meso.spec.k}, {len(sig.meso)} hashes'),
	]
	common.print_table(rows, colsep='  ')


@cli.command(no_args_is_help=True)
@click.argument('id')
@click.pass_obj
def remove(ctxobj: common.CLIContext, id: str):
	"""Remove a signature from the database."""
	db = ctxobj.get_db()

	with common.handle_errors():
		db.remove_signature(id)

	click.echo(f'Removed {id}')
