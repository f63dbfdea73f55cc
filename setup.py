#!/usr/bin/env python3
"""
Setup script for Meshtastic Contact NFC Writer
"""

from setuptools import setup

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

with open("requirements.txt", "r", encoding="utf-8") as fh:
    requirements = [line.strip() for line in fh if line.strip() and not line.startswith("#")]

setup(
    name="meshtastic-contact-nfc",
    version="1.0.0",
    description="Write Meshtastic node contact URLs to NFC tags with an ACS ACR1252 reader",
    long_description=long_description,
    long_description_content_type="text/markdown",
    py_modules=[
        "contact_token",
        "main",
        "nfc_config",
        "nfc_driver",
        "nfc_session",
        "pcsc_driver",
    ],
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: POSIX :: Linux",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: System :: Hardware",
        "Topic :: Utilities",
    ],
    python_requires=">=3.9",
    install_requires=requirements,
    extras_require={
        "test": ["pytest", "pytest-mock"],
    },
    entry_points={
        "console_scripts": [
            "nfc-contact=main:main",
        ],
    },
)
