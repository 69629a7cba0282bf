#!/usr/bin/env python
from pathlib import Path
from setuptools import setup, find_packages

long_description = Path("README.md").read_text()

setup(
    name='staypoints',
    version='0.1.0',
    description='Sequential stay-point detection for trajectories of timestamped position pings: turns raw GPS-like pings into visits with a bounding-box diameter and minimum-duration criterion.',
    long_description=long_description,
    long_description_content_type='text/markdown',

    packages=find_packages(include=['staypoints', 'staypoints.*']),
    python_requires='>=3.9',

    install_requires=[
        'pandas>=2.0',
        'geopandas',
        'numpy',
        'pyarrow',
    ],

    extras_require={
        'test': [
            'pytest',
        ]
    },

    entry_points={
        'console_scripts': ['staypoints=staypoints.cli:main'],
    },

    package_data={'staypoints': ['data/*']},
    classifiers=[
        'Programming Language :: Python :: 3',
        'License :: OSI Approved :: MIT License',
        'Operating System :: OS Independent',
    ],
)
