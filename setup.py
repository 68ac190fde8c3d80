"""Setup script for the prepacking service."""

from setuptools import setup, find_namespace_packages

setup(
    name="prepacking-service",
    version="1.0.0",
    description="Prepacking - split bulk lots into prepacks against an external stock ledger",
    author="Prepacking Team",
    package_dir={"": "src"},
    packages=find_namespace_packages(where="src", include=["prepacking*"]),
    py_modules=["config"],
    python_requires=">=3.11",
    install_requires=[
        "fastapi",
        "uvicorn[standard]",
        "pydantic>=2",
        "sqlalchemy>=2,<2.1",
        "psycopg2-binary",
        "redis",
        "requests",
        "tenacity",
        "python-jose[cryptography]",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-cov",
            "httpx",
        ],
        "dev": [
            "black",
            "flake8",
            "mypy",
            "pre-commit",
        ],
    },
    entry_points={
        "console_scripts": [
            "prepacking-api=prepacking.entrypoints.prepacking_api:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Healthcare Industry",
        "Programming Language :: Python :: 3.11",
    ],
)
