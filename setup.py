"""Setup script for aggcp package."""

from setuptools import setup, find_packages
from pathlib import Path

# Read README
this_directory = Path(__file__).parent
long_description_path = this_directory / "README.md"

if long_description_path.exists():
    long_description = long_description_path.read_text(encoding='utf-8')
else:
    long_description = "aggcp: Aggregated Conformal Prediction with scikit-learn models"

# Read version
version = {}
with open(this_directory / "aggcp" / "version.py") as f:
    exec(f.read(), version)

setup(
    name="aggcp",
    version=version['__version__'],
    author=version['__author__'],
    author_email=version['__email__'],
    description=version['__description__'],
    long_description=long_description,
    long_description_content_type="text/markdown",
    url=version['__url__'],
    packages=find_packages(exclude=["tests", "tests.*", "examples", "docs"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "Intended Audience :: Developers",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
    ],
    python_requires=">=3.9",
    install_requires=[
        "numpy>=1.23.0",
        "pandas>=1.5.0",
        "scikit-learn>=1.2.0",
        "scipy>=1.9.0",
        "joblib>=1.2.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
        ],
    },
    keywords=[
        "machine-learning",
        "conformal-prediction",
        "uncertainty-quantification",
        "ensembles",
        "prediction-intervals",
    ],
    project_urls={
        "Bug Reports": "https://github.com/aggcp/aggcp/issues",
        "Source": "https://github.com/aggcp/aggcp",
    },
)
