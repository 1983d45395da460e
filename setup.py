#!/usr/bin/env python
"""Setuptools distribution file."""
import os
from setuptools import setup


def _get_here(fname):
    return os.path.join(os.path.dirname(__file__), fname)


def _get_long_description(fname, encoding='utf8'):
    return open(fname, 'r', encoding=encoding).read()


setup(name='telnetkit',
      version='0.1.0',
      license='ISC',
      description="Python 3 anyio TELNET server and client library",
      long_description=_get_long_description(fname=_get_here('README.rst')),
      packages=['telnetkit'],
      package_data={'': ['README.rst'], },
      entry_points={
         'console_scripts': [
             'telnetkit-server = telnetkit.server:main',
             'telnetkit-client = telnetkit.client:main'
         ]},
      platforms='any',
      zip_safe=True,
      python_requires='>=3.8',
      install_requires=[
         'outcome>=1.1',
         'anyio>=4.0,<5',
      ],
      extras_require={
         'test': ['pytest', 'trio>=0.32.0', 'trustme'],
      },
      keywords=', '.join(('telnet', 'telnets', 'naws', 'server', 'client',
                          'api', 'library', 'anyio', 'trio', 'asyncio')),
      classifiers=['License :: OSI Approved :: ISC License (ISCL)',
                   'Programming Language :: Python :: 3',
                   'Intended Audience :: Developers',
                   'Development Status :: 3 - Alpha',
                   'Topic :: System :: Networking',
                   'Topic :: Terminals :: Telnet',
                   'Topic :: Internet',
                   ],
      )
