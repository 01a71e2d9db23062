#!/usr/bin/env python
"""
Setup file for installing wfbatch.
"""

import setuptools


## auxiliary functions
#
def read_whole_file(path):
    """
    Return file contents as a string.
    """
    with open(path, 'r') as stream:
        return stream.read()


## real setup description begins here
#
setuptools.setup(
    name="wfbatch",
    version="1.0.0",  # see PEP 440

    packages=setuptools.find_packages(exclude=['*.tests']),
    # metadata for upload to PyPI
    description=(
        "Batch scheduler adapters (LSF, Moab/Torque, Torque, SLURM)"
        " for workflow engines."
    ),
    long_description=read_whole_file('README.rst'),
    license="LGPL",
    keywords=str.join(' ', [
        "batch",
        "cluster",
        "job management",
        "lsf",
        "moab",
        "pbs",
        "slurm",
        "torque",
        "workflow",
    ]),

    # see http://pypi.python.org/pypi?%3Aaction=list_classifiers
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: Developers",
        "Intended Audience :: Science/Research",
        ("License :: OSI Approved :: GNU Library or"
         " Lesser General Public License (LGPL)"),
        "Operating System :: POSIX :: Linux",
        "Programming Language :: Python",
        "Programming Language :: Python :: 3",
        "Topic :: System :: Distributed Computing",
        ],

    python_requires='>=3.6',

    # run-time dependencies
    install_requires=[
        'coloredlogs',
    ],
    extras_require={
        'test': [
            'pytest>=4.1',
            'mock',
        ],
    },

    # additional non-Python files to be bundled in the package
    package_data={
        'wfbatch': [
            # example files
            'etc/wfbatch.conf.example',
            'etc/logging.conf.example',
        ],
    },

    # `zip_safe` can ease deployment, but is only allowed if the package
    # do *not* do any __file__/__path__ magic nor do they access package data
    # files by file name (use `pkg_resources` instead).
    zip_safe=True,
)
