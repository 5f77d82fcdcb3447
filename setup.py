#!/usr/bin/env python3
"""
Setup Script for Siteflow
==========================

Installation:
    pip install -e .              # Development install
    pip install -e .[dev]         # With dev dependencies

Build:
    python -m build
    twine upload dist/*
"""

from pathlib import Path
from setuptools import setup, find_packages

# Read version from package
version = {}
with open("siteflow/__init__.py") as f:
    for line in f:
        if line.startswith("__version__"):
            exec(line, version)
            break

VERSION = version.get("__version__", "0.1.0")

# Read README for long description
README = Path("README.md")
LONG_DESCRIPTION = README.read_text() if README.exists() else ""

# Core dependencies
INSTALL_REQUIRES = [
    "pyyaml>=6.0",
    "python-dotenv>=1.0.0",
    "colorlog>=6.0.0",
    "fastapi>=0.100.0",
    "uvicorn[standard]>=0.24.0",
]

# Optional dependencies
EXTRAS_REQUIRE = {
    "dev": [
        "pytest>=7.0.0",
        "pytest-cov>=4.0.0",
        "pytest-asyncio>=0.21.0",
        "httpx>=0.24.0",
        "black>=23.0.0",
        "isort>=5.12.0",
        "flake8>=6.0.0",
        "mypy>=1.0.0",
    ],
}

# Add 'all' extra that includes everything
EXTRAS_REQUIRE["all"] = list(set(
    dep for deps in EXTRAS_REQUIRE.values() for dep in deps
))

setup(
    name="siteflow",
    version=VERSION,
    author="Siteflow Team",
    author_email="team@example.com",
    description="Static site build pipeline with series/parallel task orchestration",
    long_description=LONG_DESCRIPTION,
    long_description_content_type="text/markdown",
    url="https://github.com/example/siteflow",
    license="MIT",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Topic :: Software Development :: Build Tools",
        "Topic :: Internet :: WWW/HTTP :: Site Management",
    ],
    keywords=[
        "static-site",
        "build",
        "task-runner",
        "orchestration",
    ],
    packages=find_packages(exclude=["tests", "tests.*", "docs", "examples"]),
    package_dir={"": "."},
    include_package_data=True,
    python_requires=">=3.9",
    install_requires=INSTALL_REQUIRES,
    extras_require=EXTRAS_REQUIRE,
    entry_points={
        "console_scripts": [
            "siteflow=scripts.run:main",
        ],
    },
    package_data={
        "": ["*.yaml", "*.yml", "*.json"],
        "config": ["*.yaml"],
    },
    data_files=[
        ("config", ["config/default.yaml"]),
    ],
    zip_safe=False,
)
