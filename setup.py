# setup.py
from setuptools import setup, find_packages

setup(
    name="schedcalc",
    version="0.1.0",
    description="A CLI for importing bank CSV exports and calculating IRS Schedule C totals",
    author="Your Name",
    author_email="you@example.com",
    url="https://github.com/yourusername/schedcalc",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "click>=7.0",
        "pyyaml>=5.3",
        "pandas>=1.1",
        "python-dotenv>=0.19",
        "huggingface_hub>=0.20",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "schedcalc=schedcalc.cli:main",
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],
)
