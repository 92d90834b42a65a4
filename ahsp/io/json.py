"""JSON conversion of the package's value types.

Genome metadata and sketch parameters are stored as JSON in signature records, in the genome
cache and in the database's ``db_info`` table. A single ``cattrs`` converter turns them into
JSON-writable data and back; :func:`.dumps` and :func:`.loads` (and the file versions
:func:`.dump` and :func:`.load`) combine that with the :mod:`json` module.
"""

import json
from typing import Any

import cattr
import numpy as np


converter = cattr.Converter()

# Numpy integers show up in sketch parameters and taxonomy ids
converter.register_unstructure_hook(np.integer, int)


class Jsonable:
	"""Mixin for classes which define their own JSON representation.

	Subclasses implement ``__to_json__(self)``, returning JSON-writable data, and the classmethod
	``__from_json__(cls, data)``. Either may be left as ``None`` to use the converter's default
	handling of ``attrs`` classes.
	"""
	__to_json__ = None
	__from_json__ = None


def _has_custom(method: str):
	return lambda cls: isinstance(cls, type) and issubclass(cls, Jsonable) and getattr(cls, method) is not None

converter.register_unstructure_hook_func(_has_custom('__to_json__'), lambda obj: obj.__to_json__())
converter.register_structure_hook_func(_has_custom('__from_json__'), lambda data, cls: cls.__from_json__(data))


def to_json(obj):
	"""Convert an object to data which can be passed to :func:`json.dumps`."""
	return converter.unstructure(obj)


def from_json(data, cls=Any):
	"""Create an instance of ``cls`` from parsed JSON data."""
	return converter.structure(data, cls)


def dumps(obj, **kw) -> str:
	"""Get the JSON representation of an object as a string.

	Raises
	------
	TypeError
		If the object contains values which have no JSON representation.
	"""
	return json.dumps(to_json(obj), **kw)


def loads(s, cls=Any):
	"""Load an object of type ``cls`` from a JSON string."""
	return from_json(json.loads(s), cls)


def dump(obj, f, **kw):
	"""Write the JSON representation of an object to a text file object."""
	json.dump(to_json(obj), f, **kw)


def load(f, cls=Any):
	"""Load an object of type ``cls`` from a text file object."""
	return from_json(json.load(f), cls)
