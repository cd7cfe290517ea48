"""Setup script for Shipwright.

This script installs Shipwright and its dependencies.
"""

from __future__ import annotations

import setuptools

# Read the long description from README.md
with open("README.md", "r", encoding="utf-8") as f:
    long_description = f.read()

# Read version from __version__.py
version = {}
with open("shipwright/__version__.py", "r", encoding="utf-8") as f:
    exec(f.read(), version)

# Dependencies
install_requires = [
    "pydantic>=2.0.0",
    "pyyaml>=6.0",
    "structlog>=22.1.0",
    "python-json-logger>=2.0.4",
    "aiofiles>=23.1.0",
    "psutil>=5.9.0",
    "tenacity>=8.2.0",
    "cryptography>=41.0.0",
]

# Development dependencies
dev_requires = [
    "pytest>=7.0.0",
    "pytest-asyncio>=0.21.0",
    "pytest-cov>=4.0.0",
    "black>=23.1.0",
    "isort>=5.12.0",
    "mypy>=1.0.0",
    "types-pyyaml",
    "types-aiofiles",
]

# Build dependencies
build_requires = [
    "pyinstaller>=5.9.0",
    "wheel>=0.38.0",
    "setuptools>=65.5.0",
]

setuptools.setup(
    name="shipwright",
    version=version.get("__version__", "0.1.0"),
    author="Shipwright Team",
    description="Versioned, platform-specific binary builds with preprocessed preferences",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=setuptools.find_packages(include=["shipwright", "shipwright.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Topic :: Software Development :: Build Tools",
    ],
    python_requires=">=3.11",
    install_requires=install_requires,
    extras_require={
        "dev": dev_requires,
        "build": build_requires,
        "all": dev_requires + build_requires,
    },
    entry_points={
        "console_scripts": [
            "shipwright=shipwright.main:main",
        ],
    },
)
