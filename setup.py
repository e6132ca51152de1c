# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

from os import path

from setuptools import find_namespace_packages, setup

PACKAGE_NAME = "pytcb"
PACKAGE_VERSION = "0.1.0"

path_here = path.abspath(path.dirname(__file__))

with open(path.join(path_here, "README.md"), encoding="utf-8") as f:
    long_description = f.read()

setup(
    name=PACKAGE_NAME,
    version=PACKAGE_VERSION,
    description="Tools to issue and verify signed firmware TCB endorsements",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_namespace_packages(include=["pytcb", "pytcb.*"]),
    entry_points={
        "console_scripts": ["pytcb=pytcb.cli.main:main"],
    },
    python_requires=">=3.8",
    install_requires=[
        "cryptography>=42",
        "cbor2>=5.4",
        "loguru",
    ],
    extras_require={
        "test": ["pytest"],
    },
    license="MIT",
    author="TCB Endorsement Team",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Intended Audience :: System Administrators",
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
    ],
)
