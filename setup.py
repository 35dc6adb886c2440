"""Setup script for the agent-dispatch package."""

from setuptools import setup, find_packages

setup(
    name="agent-dispatch",
    version="0.1.0",
    packages=find_packages(exclude=("tests", "tests.*")),
    python_requires=">=3.10",
    install_requires=[
        "pydantic>=2.5",
        "pydantic-settings>=2.1",
        "structlog>=23.1",
        "prometheus-client>=0.17",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.21",
        ],
    },
    description="agent-dispatch - Mention-addressed task dispatch to pluggable agent providers",
    author="Agent Dispatch Team",
)
