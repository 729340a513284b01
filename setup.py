#!/usr/bin/python3
# Setup file for gitstream
# Copyright (C) 2026 The gitstream developers
# SPDX-License-Identifier: Apache-2.0 OR GPL-2.0-or-later

from setuptools import setup

tests_require = ["pytest"]

setup(
    name="gitstream",
    version="0.1.0",
    description="Client-side git wire protocol and object engine",
    license="Apache-2.0 OR GPL-2.0-or-later",
    python_requires=">=3.9",
    packages=["gitstream"],
    package_data={"gitstream": ["py.typed"]},
    install_requires=["urllib3>=1.25"],
    extras_require={"tests": tests_require},
    classifiers=[
        "Development Status :: 3 - Alpha",
        "License :: OSI Approved :: Apache Software License",
        "Programming Language :: Python :: 3",
        "Operating System :: POSIX",
        "Topic :: Software Development :: Version Control",
    ],
)
