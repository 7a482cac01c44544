from setuptools import setup, find_namespace_packages

setup(
    name="throttle",
    version="0.1.0",
    packages=find_namespace_packages(include=["throttle", "throttle.*"]),
    python_requires=">=3.10",
    install_requires=[
        "fastapi",
        "starlette",
        "pydantic",
        "pydantic-settings",
        "redis>=5.0.1",
        "pymemcache",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "httpx",
        ],
    },
)
