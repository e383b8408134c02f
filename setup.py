"""
LayerPick — Setup Script
=========================
Installs LayerPick as a local editable package so that all internal
imports (e.g. `from layerpick.tree import parse_weight_map`) work
seamlessly from any script or notebook.

Usage:
    cd /path/to/layerpick
    pip install -e .
    pip install -e ".[dev]"   # with pytest
"""

from setuptools import setup, find_packages

setup(
    name="layerpick",
    version="0.1.0",
    author="Aditya",
    description=(
        "LayerPick: module-tree browser and compact quantization ignore-list "
        "builder for large model checkpoints"
    ),
    long_description=open("README.md", encoding="utf-8").read(),
    long_description_content_type="text/markdown",
    packages=find_packages(include=["layerpick", "layerpick.*"]),
    python_requires=">=3.10",
    install_requires=[
        "safetensors>=0.4.0",
        "numpy>=1.24.0",
        "pyyaml>=6.0",
    ],
    extras_require={
        "dev": ["pytest>=7.0"],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: Apache Software License",
        "Programming Language :: Python :: 3",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
    ],
)
