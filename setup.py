"""
Setup script for certprep.

certprep is an adaptive quiz engine for nurse-aide (CNA) certification
practice. It serves three roles:

1. Personalized practice - Spaced-repetition aware question selection
2. Shared quiz pool - Fairly assigned, pre-assembled quiz blueprints
3. Content pipeline - Model-generated questions that keep the catalog full

The 'certprep' command is the operator entry point.
"""

from setuptools import find_packages, setup

setup(
    name="certprep",
    version="1.0.0",
    description="Adaptive certification quiz engine with spaced repetition and a shared quiz pool",
    long_description=open("README.md", encoding="utf-8").read() if __import__("os").path.exists("README.md") else "",
    long_description_content_type="text/markdown",
    author="certprep",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        # CLI
        "typer>=0.9.0",
        "rich>=13.0.0",
        # Database
        "sqlalchemy>=2.0.0",
        "psycopg2-binary>=2.9.0",
        # Config & Validation
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        # HTTP
        "httpx>=0.25.0",
        # Logging
        "loguru>=0.7.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "ruff>=0.1.0",
            "mypy>=1.0.0",
        ],
        "ai": [
            "google-generativeai>=0.3.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "certprep=certprep.cli.main:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: Education",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Education",
        "Topic :: Education :: Computer Aided Instruction (CAI)",
    ],
    keywords="quiz spaced-repetition certification cli education",
)
