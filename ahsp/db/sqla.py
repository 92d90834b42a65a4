"""Custom types and other utilities for SQLAlchemy."""

import os
from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator, String

import ahsp.io.json as ajson
from ahsp.io.util import FilePath


#: Seconds an SQLite connection waits on a lock held by another connection before failing.
SQLITE_TIMEOUT = 30


class JsonString(TypeDecorator):
	"""SQLA column type for JSON data which is stored in the database as a standard string column.

	Data is automatically serialized/unserialized when saved/loaded.
	Important: mutation tracking is not enabled for this type. If the value is a list or dict and
	you modify it in place these changes will not be detected. Instead, re-assign the attribute.
	"""

	impl = String
	cache_ok = True

	def process_bind_param(self, value, dialect):
		return None if value is None else ajson.dumps(value)

	def process_result_value(self, value, dialect):
		return None if value is None else ajson.loads(value)


def sqlite_engine(path: Optional[FilePath] = None, **kw) -> Engine:
	"""Create an SQLAlchemy engine for an SQLite database.

	Connections enforce foreign key constraints. File databases use write-ahead logging so that
	readers are not blocked by a concurrent writer. The Python ``sqlite3`` module's own transaction
	handling is disabled and transactions are started explicitly by SQLAlchemy, so that every
	statement of a transaction (including DDL) is atomic.

	Parameters
	----------
	path
		Path to database file. If None, create a private in-memory database which is shared by all
		threads using the engine.
	\\**kw
		Additional keyword arguments to :func:`sqlalchemy.create_engine`.
	"""
	connect_args = {'check_same_thread': False, 'timeout': SQLITE_TIMEOUT}

	if path is None:
		engine = create_engine('sqlite://', connect_args=connect_args, poolclass=StaticPool, **kw)
	else:
		engine = create_engine(f'sqlite:///{os.fspath(path)}', connect_args=connect_args, **kw)

	in_memory = path is None

	@event.listens_for(engine, 'connect')
	def _on_connect(dbapi_connection, connection_record):
		dbapi_connection.isolation_level = None
		cursor = dbapi_connection.cursor()
		cursor.execute('PRAGMA foreign_keys=ON')
		if not in_memory:
			cursor.execute('PRAGMA journal_mode=WAL')
		cursor.close()

	@event.listens_for(engine, 'begin')
	def _on_begin(conn):
		conn.exec_driver_sql('BEGIN')

	return engine
