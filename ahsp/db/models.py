"""SQLAlchemy models for the signature database."""

import sqlalchemy as sa
from sqlalchemy import Column, Integer, String, LargeBinary, ForeignKey
from sqlalchemy.orm import declarative_base

from .sqla import JsonString


__all__ = [
	'SignatureRow',
	'TaxonomyEntry',
	'DbInfo',
]


# Naming convention for constraints and indices, used by SQLAlchemy when creating schema.
NAMING_CONVENTION = {
  "ix": "ix_%(column_0_label)s",
  "uq": "uq_%(table_name)s_%(column_0_name)s",
  "ck": "ck_%(table_name)s_%(constraint_name)s",
  "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
  "pk": "pk_%(table_name)s",
}

# SqlAlchemy metadata object and declarative base
metadata = sa.MetaData(naming_convention=NAMING_CONVENTION)
Base = declarative_base(metadata=metadata)


class SignatureRow(Base):
	"""A stored signature record.

	Attributes
	----------
	id : str
		String column (primary key). Signature id.
	format_version : int
		Integer column. Version of the binary encoding of ``data``, see :mod:`ahsp.db.record`.
	data : bytes
		Binary column. The encoded signature.
	"""

	__tablename__ = 'signatures'

	id = Column(String(), primary_key=True)
	format_version = Column(Integer(), nullable=False)
	data = Column(LargeBinary(), nullable=False)

	def __repr__(self):
		return f'<{type(self).__name__}:{self.id!r}>'


class TaxonomyEntry(Base):
	"""Entry of the taxonomy index, mapping a lineage term to a signature containing it.

	Attributes
	----------
	term : str
		String column (primary key along with ``signature_id``). Lineage term.
	signature_id : str
		String column (primary key along with ``term``). ID of signature.
	"""

	__tablename__ = 'taxonomy_index'

	term = Column(String(), primary_key=True, index=True)
	signature_id = Column(
		String(),
		ForeignKey('signatures.id', ondelete='CASCADE'),
		primary_key=True,
		index=True,
	)

	def __repr__(self):
		return f'<{type(self).__name__}:{self.term!r}->{self.signature_id!r}>'


class DbInfo(Base):
	"""Key/value information about the database as a whole.

	Attributes
	----------
	key : str
		String column (primary key).
	value
		JSON column.
	"""

	__tablename__ = 'db_info'

	key = Column(String(), primary_key=True)
	value = Column(JsonString())

	def __repr__(self):
		return f'<{type(self).__name__}:{self.key!r}={self.value!r}>'
