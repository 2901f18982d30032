"""
Setup script for tutor-progress-engine.

The Adaptive Progress & Recommendation Engine behind the K-12 tutoring app.
It turns finished learning sessions into:

1. Per-topic mastery - bounded, monotonic, replay-safe
2. Daily streaks - with milestones and longest-streak tracking
3. Achievements - declarative rules, unlocked exactly once
4. Recommendations - prerequisite-aware "what to study next"

The 'tutor-progress' command is the operator CLI.
"""

from setuptools import find_packages, setup

setup(
    name="tutor-progress-engine",
    version="1.0.0",
    description="Adaptive progress, streak, achievement and recommendation engine for K-12 tutoring",
    long_description=open("README.md", encoding="utf-8").read() if __import__("os").path.exists("README.md") else "",
    long_description_content_type="text/markdown",
    author="Right Learning",
    packages=find_packages(include=["src", "src.*"]),
    py_modules=["config"],
    python_requires=">=3.11",
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
    },
    entry_points={
        "console_scripts": [
            "tutor-progress=src.cli.main:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: Education",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Education",
        "Topic :: Education :: Computer Aided Instruction (CAI)",
    ],
    keywords="learning mastery streaks achievements recommendations education",
)
