#!/usr/bin/env python

# Copyright 2013 - 2018, New York University and the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""
<Program Name>
  setup.py

<Copyright>
  Dual licensed under MIT OR Apache-2.0, see the SPDX identifier above.

<Purpose>
  BUILD SOURCE DISTRIBUTION

  The following shell command generates a tufcore source archive that can be
  distributed to other users.  The packaged source is saved to the 'dist'
  folder in the current directory.

  $ python setup.py sdist


  INSTALLATION OPTIONS

  pip - installing and managing Python packages (recommended):

  # Installing from local source archive.
  $ pip install <path to archive>

  # Or from the root directory of the unpacked archive.
  $ pip install .

  # Development install, with the test requirements.
  $ pip install -e .[test]

  Ed25519, RSA and ECDSA signature verification is provided by
  securesystemslib and its 'crypto' extra, which is always installed.
"""

from setuptools import setup
from setuptools import find_packages


with open('README.md') as file_object:
  long_description = file_object.read()


setup(
  name = 'tufcore',
  version = '1.0.0', # If updating version, also update it in tufcore/__init__.py
  description = 'Trust verification core for secure software updates',
  long_description = long_description,
  long_description_content_type='text/markdown',
  keywords = 'update updater secure authentication key compromise revocation',
  classifiers = [
    'Development Status :: 4 - Beta',
    'Intended Audience :: Developers',
    'License :: OSI Approved :: MIT License',
    'License :: OSI Approved :: Apache Software License',
    'Natural Language :: English',
    'Operating System :: POSIX',
    'Operating System :: POSIX :: Linux',
    'Operating System :: MacOS :: MacOS X',
    'Operating System :: Microsoft :: Windows',
    'Programming Language :: Python',
    'Programming Language :: Python :: 3',
    'Programming Language :: Python :: 3 :: Only',
    'Programming Language :: Python :: Implementation :: CPython',
    'Topic :: Security',
    'Topic :: Software Development'
  ],
  python_requires=">=3.8, <4",
  install_requires = [
    'requests>=2.19.1',
    'securesystemslib[crypto]>=1.0,<2'
  ],
  extras_require = {
    'test': ['pytest']
  },
  packages = find_packages(exclude=['tests', 'tests.*'])
)
