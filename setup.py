"""
location: setup.py


"""
from setuptools import setup, find_packages

setup(
    name="ask-tennis",
    version="1.0.0",
    packages=find_packages(include=["ask_tennis", "ask_tennis.*"]),
    python_requires=">=3.10",
    install_requires=[
        "fastmcp>=2.10.0",
        "fastapi>=0.110.0",
        "uvicorn>=0.29.0",
        "httpx>=0.28.1",
        "duckdb>=1.0.0",
        "pandas>=2.2.3",
        "pydantic>=2.11.3",
        "python-dotenv>=1.1.0",
        "langchain-core>=0.3.0",
        "langchain-ollama>=0.3.2",
        "prometheus-client>=0.20.0",
        "tabulate>=0.9.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "mypy>=1.0.0",
            "black>=23.0.0",
            "isort>=5.0.0",
            "invoke>=2.2.0",
        ]
    },
    entry_points={
        "console_scripts": [
            "ask-tennis = ask_tennis.__main__:main",
        ],
    },
)
