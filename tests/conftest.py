import numpy as np
import pytest

from ahsp.db.sigdb import SignatureDatabase
from ahsp.sigs.calc import SignatureBuilder


@pytest.fixture(autouse=True)
def raise_numpy_errors():
	"""Raise exceptions for all Numpy errors in all tests.

	NOTE: this doesn't affect operations with Numpy scalars and so has limited usefulness.
	"""

	old_settings = np.seterr(all='raise')

	yield

	np.seterr(**old_settings)  # Not really necessary


@pytest.fixture()
def memdb():
	"""Empty in-memory signature database."""
	db = SignatureDatabase.open()
	yield db
	db.close()


@pytest.fixture(scope='session')
def small_builder():
	"""Signature builder with small parameters, for speed."""
	return SignatureBuilder(macro_k=15, meso_k=7, sketch_size=50)
