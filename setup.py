from setuptools import setup, find_packages

setup(
    name="careaudio",
    version="0.1.0",
    description="Adaptive audio capture and upload pipeline for home-care reports",
    author="",
    python_requires=">=3.9",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "numpy>=1.21.0",
        "soundfile>=0.12.1",
        "rich>=12.5.0",
        "pydantic>=2.0.0",
        "pyyaml>=6.0.0",
        "pypubsub>=4.0.3",
        "aiohttp>=3.8.0",
    ],
    extras_require={
        "device": [
            "pyaudio>=0.2.11",
        ],
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "careaudio=careaudio.main:main",
        ],
    },
)
