from setuptools import setup, find_packages

setup(
    name="aiproxy",
    version="0.1.0",
    packages=find_packages(include=["aiproxy", "aiproxy.*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi>=0.110",
        "httpx>=0.27",
        "openai>=1.30",
        "pydantic>=2.6",
        "pydantic-settings>=2.2",
        "redis>=5.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
            "respx>=0.21",
        ],
    },
)
