# SPDX-License-Identifier: LGPL-3.0-or-later
from setuptools import setup, find_packages

setup(
    name="guestconvert",
    version="0.1.0",
    packages=find_packages(include=["guestconvert", "guestconvert.*"]),
    install_requires=[l.strip() for l in open("requirements.txt", encoding="utf-8") if l.strip() and not l.startswith("#")],
    extras_require={"test": ["pytest"]},
    python_requires=">=3.8",
)
