from setuptools import setup, find_packages

setup(
    name="bond_quote_engine",
    version="0.1.0",
    description="Indicative bond quote engine with multi-source fallback",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "numpy",
        "pandas",
        "httpx",
        "python-dotenv",
        "apscheduler>=3.10,<4",
    ],
    extras_require={
        "test": ["pytest"],
    },
    python_requires=">=3.10",
)
