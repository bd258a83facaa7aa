#!/usr/bin/env python3
#
# see: https://setuptools.pypa.io/en/latest/userguide/quickstart.html

import setuptools

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setuptools.setup(
    name="reduction_bench",
    version="0.1.0",
    author="reduction_bench contributors",
    description="Serial, partitioned, atomic and work-stealing parallel reductions with a benchmark harness.",
    long_description=long_description,
    long_description_content_type="text/markdown",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    package_dir={"": "src"},
    packages=setuptools.find_packages(where="src"),
    install_requires=[
        "numpy",
        "pandas",
        "tomli; python_version < '3.11'",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "reduction-bench=reduction_bench.cli:main",
        ],
    },
    python_requires=">=3.9",
)
