from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="mcap-video-extract",
    version="0.1.0",
    author="MCAP Video Extract Team",
    author_email="developer@example.com",
    description="Extract foxglove.CompressedVideo channels from MCAP recordings into playable video files",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(),
    classifiers=[
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.9",
    install_requires=[
        "av>=14.4.0",
        "mcap>=1.1.0",
        "typer>=0.9.0",
        "rich>=13.4.0",
        "pydantic>=2.4.0",
        "structlog>=23.1.0",
        "python-dotenv>=1.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "mcap-video-extract=mcap_video_extract.cli:app",
        ],
    },
)
