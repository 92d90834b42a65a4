"""setuptools installation script for ahsp package"""

from setuptools import setup, find_packages


setup(
	name='ahsp',
	version='0.1.0',
	description='Multi-resolution genomic signature database with taxonomy index.',
	python_requires='>=3.8',
	packages=find_packages(include=['ahsp', 'ahsp.*']),
	install_requires=[
		'numpy>=1.20',
		'attrs>=20.1',
		'cattrs>=1.1',
		'sqlalchemy>=1.4',
		'biopython>=1.79',
		'click>=8.2',
		'tqdm',
	],
	extras_require={
		'test': ['pytest'],
	},
	entry_points={
		'console_scripts': [
			'ahsp = ahsp.cli:cli',
		],
	},
)
