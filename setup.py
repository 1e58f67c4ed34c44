"""Setup configuration for the Gavel governance service."""

from setuptools import setup, find_packages

setup(
    name="gavel",
    version="0.0.1",
    description="Community governance and federated enforcement engine",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.11",
    install_requires=[
        "aiosqlite",
        "PyYAML",
        "python-dotenv",
        "prompt_toolkit",
        "py-cord",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
        ],
    },
    entry_points={
        "console_scripts": [
            "gavel=gavel.main:main",
        ],
    },
)
