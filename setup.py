"""
ldap-river
----------

ldap-river keeps a search index in sync with an LDAP directory by polling
it, as the AG DSN Pycroft LDAP syncer does in the other direction.

Notes for developers
--------------------

On a running system, you can just execute ``pip install -e .`` to update
e.g. console script names.
"""

from setuptools import setup, find_packages

setup(
    name="ldap-river",
    author="The Pycroft Authors",
    description="Periodic LDAP to search index synchronization",
    long_description=__doc__,
    version="0.1.0",
    url="http://github.com/agdsn/pycroft/",
    packages=find_packages(exclude=["tests", "tests.*"]),
    include_package_data=True,
    zip_safe=False,
    python_requires=">= 3.12",
    install_requires=[
        'APScheduler >= 3.10, < 4',
        'elasticsearch >= 8.0',
        'jsonschema',
        'ldap3',
        'sentry-sdk',
    ],
    extras_require={
        'test': [
            'pytest',
        ]
    },
    tests_require=[
        'pytest',
    ],
    entry_points={
        'console_scripts': [
            'ldap_river = ldap_river.__main__:main',
        ]
    },
    license="Apache Software License",
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Environment :: No Input/Output (Daemon)',
        'Intended Audience :: System Administrators',
        'License :: OSI Approved :: Apache Software License',
        'Operating System :: OS Independent',
        'Programming Language :: Python :: 3.12',
        'Programming Language :: Python :: 3.13',
        'Topic :: System :: Systems Administration :: Authentication/Directory :: LDAP',
    ],
)
