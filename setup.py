from setuptools import setup, find_packages

setup(
    name="rpc-cache-proxy",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["api"],
    install_requires=[
        "fastapi",
        "uvicorn",
        "pydantic>=2",
        "pydantic-settings",
        "structlog>=21.3",
        "redis>=4.2",
        "aiohttp",
        "prometheus-client"
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "httpx"
        ],
    },
    python_requires=">=3.8",
    entry_points={
        "console_scripts": [
            "rpc-cache-proxy=api:main",
        ],
    }
)
