from setuptools import setup, find_packages

setup(
    name="roam-auth",
    version="0.1.0",
    packages=find_packages(include=["roam_auth", "roam_auth.*"]),
    install_requires=[
        "aiohttp>=3.8.0",
        "redis>=4.2.0",
        "pydantic>=1.8.0,<2.0.0",
        "python-dotenv>=0.19.0",
        "pyyaml>=5.4",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.18",
        ],
    },
    python_requires=">=3.8",
)
