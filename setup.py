#!/usr/bin/env python3
"""
Setup script for the portfolio orchestrator.
"""

from setuptools import setup, find_packages

# Tool configuration is in pyproject.toml
# This file exists for compatibility with older pip versions

setup(
    name="portfolio-orchestrator",
    version="1.0.0",
    description="Coordinated deployments across a portfolio of domains",
    python_requires=">=3.10",
    packages=find_packages(include=["portfolio_orchestrator", "portfolio_orchestrator.*"]),
    install_requires=[
        "pydantic>=2.0",
        "httpx>=0.24",
        "aiofiles>=23.0",
        "pyyaml>=6.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
        ],
    },
    entry_points={
        "console_scripts": [
            "portfolio-orchestrator=portfolio_orchestrator.__main__:main",
        ],
    },
)
