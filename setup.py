"""
ReadAloud build script.

Installs the readaloud packages plus the `readaloud` command.

Usage:
    # Development (editable, links to source):
    pip install -e .[test]

    # Run the tests:
    python3 -m unittest discover tests
"""

from setuptools import setup, find_namespace_packages

APP_NAME = "ReadAloud"

setup(
    name=APP_NAME,
    version="1.0.0",
    description="Turn web articles and YouTube links into listenable MP3 audio",
    packages=find_namespace_packages(include=["readaloud", "readaloud.*"]),
    py_modules=["main"],
    install_requires=[
        "requests>=2.28.0",
        "beautifulsoup4>=4.12",
        "lxml>=4.9",
        "mutagen>=1.46",
        "yt-dlp>=2024.1.1",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    python_requires=">=3.10",
    entry_points={
        "console_scripts": [
            "readaloud=main:main",
        ],
    },
)
