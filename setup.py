#!/usr/bin/env python
from setuptools import setup
setup(
    name='httpmulti',
    version='1.0',
    description='Single and Multiplexed Batch HTTP Requests',
    author='Six Apart',
    author_email='python@sixapart.com',

    packages=['httpmulti'],
    python_requires='>=3.9',
    install_requires=['httplib2>=0.19'],
    extras_require={
        'test': ['pytest', 'mox3'],
    },
)
