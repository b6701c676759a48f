from setuptools import setup, find_packages

setup(
    name="widactl",
    version="1.0.0",
    description="Terminal monitoring console for the Wida job queue, worker and scheduler platform",
    packages=find_packages(include=["widactl", "widactl.*"]),
    install_requires=[
        "click>=8.0.0",
        "httpx>=0.24.0",
        "loguru>=0.7.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "widactl=widactl.cli:main",
        ],
    },
    python_requires=">=3.8",
)
