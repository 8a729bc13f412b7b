# -*- coding: utf-8 -*-
"""secret_lease_manager a module keeping leased secrets alive.

This module tracks secrets read from a remote secret service, renews or rotates their
leases shortly before they expire and publishes every change to listeners.
Live property sources built on those events always expose the current secret.

"""

import setuptools
import re
from io import open

VERSIONFILE="secret_lease_manager/_version.py"
verstrline = open(VERSIONFILE, "rt").read()
VSRE = r"^__version__ = ['\"]([^'\"]*)['\"]"
mo = re.search(VSRE, verstrline, re.M)
if mo:
    verstr = mo.group(1)
else:
    raise RuntimeError("Unable to find version string in %s." % (VERSIONFILE,))

with open("README.md", "r", encoding='utf-8') as fh:
    long_description = fh.read()

setuptools.setup(
    name='secret_lease_manager',
    version=verstr,
    author="Mike Moore",
    author_email="z_z_zebra@yahoo.com",
    description="Client side lease management for secrets that renews, rotates and revokes leases and publishes lease events to consumers",
    long_description_content_type="text/markdown",
    long_description=long_description,
    url="https://github.com/Mikemoore63/secret-lease-manager",
    packages=setuptools.find_packages(),
    tests_require=['pytest'],
    extras_require={
        "test": ["pytest"],
    },
    include_package_data=True,
    license="MIT",
    scripts=[],
    python_requires=">=3.8",
    install_requires=[
        "google-cloud-secret-manager~=2.0",
        "google-auth>=2.0,<3.0",
        "google-crc32c~=1.0",
        "grpcio~=1.0",
        "hvac>=1.0,<3.0"
    ],
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],

)
