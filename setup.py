#!/usr/bin/env python

"""The setup script."""

from setuptools import setup, find_packages  # type: ignore

version = "0.1.0"

install_requires = [
    "click",
    "numpy",
    "pandas",
    "anndata",
    "matplotlib",
    "seaborn",
    "pytest",
    "pytest-runner",
]

extras_require = {
    "test": [
        "pytest",
        "scikit-learn",
    ],
}


setup(
    name="dascombat",
    author="Aaron Scott",
    author_email="aaron.scott@med.lu.se",
    install_requires=install_requires,
    extras_require=extras_require,
    long_description="ComBat batch effect correction for quantitative proteomics matrices, with PCA before and after correction.",
    include_package_data=True,
    packages=find_packages(include=["dascombat", "dascombat.*"]),
    entry_points={
        "console_scripts": [
            "dascombat=dascombat.cli:main",
        ],
    },
    version=version,
)
