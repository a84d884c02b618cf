"""
Setup configuration for MK Volume Bot payments
"""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="mk-volume-bot-payments",
    version="0.1.0",
    author="MK Volume Bot Team",
    description="SOL payment flow and purchase recording backend for MK Volume Bot plans",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/yourusername/mk-volume-bot-payments",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Libraries",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.10",
    install_requires=[
        "fastapi>=0.109.0",
        "uvicorn[standard]>=0.27.0",
        "pydantic>=2.5.3",
        "pydantic-settings>=2.1.0",
        "httpx>=0.26.0",
        "solders>=0.21.0",
        "structlog>=24.1.0",
        "python-dotenv>=1.0.0",
        "rich>=13.7.0",
        "slowapi>=0.1.9",
        "mangum>=0.17.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.23.0",
            "factory-boy>=3.3.0",
        ],
    },
    # Note: no console_scripts entry point, the CLI runs an event loop itself:
    #   python -m src.cli.pay_cli pay starter
    #   python -m src.backend.server
)
