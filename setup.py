"""
Setup script for quiz-assessment-engine.

The assessment engine drives learner quiz attempts for training courses:

1. Quiz Sessions - start, answer, submit, retake, exit, timed expiry
2. Configuration - presets, per-course / per-quiz rules, validation
3. Certificates - issued on a passing result, publicly verifiable

The 'assess' command is the admin entry point.
"""

from setuptools import find_packages, setup

setup(
    name="quiz-assessment-engine",
    version="1.0.0",
    description="Quiz sessions, scoring, attempt limits and certificates for training courses",
    long_description=open("README.md", encoding="utf-8").read() if __import__("os").path.exists("README.md") else "",
    long_description_content_type="text/markdown",
    author="Winbro Training Reels",
    packages=find_packages(include=["assessment", "assessment.*"]),
    py_modules=["config"],
    python_requires=">=3.10",
    install_requires=[
        # CLI
        "typer>=0.9.0",
        "rich>=13.0.0",
        # Database
        "sqlalchemy[asyncio]>=2.0.0,<2.1",
        "psycopg2-binary>=2.9.0",
        "asyncpg>=0.28.0",
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
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "ruff>=0.1.0",
            "mypy>=1.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "assess=assessment.cli.main:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: Developers",
        "Intended Audience :: Education",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Education",
        "Topic :: Education :: Computer Aided Instruction (CAI)",
    ],
    keywords="quiz assessment certificates education training",
)
