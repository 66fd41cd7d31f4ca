"""
Setup script for NutriSafe: a clinical safety rule engine for drug-food
interactions, allergen detection and guideline contraindications.
"""

import sys
from pathlib import Path
from setuptools import setup, find_packages

# Ensure Python version compatibility
if sys.version_info < (3, 11):
    raise RuntimeError("NutriSafe requires Python 3.11 or higher")

# Package metadata
PACKAGE_NAME = "nutrisafe-engine"
VERSION = "1.0.0"
AUTHOR = "NutriSafe Team"
AUTHOR_EMAIL = "contact@nutrisafe.org"
URL = "https://github.com/nutrisafe/nutrisafe-engine"
DESCRIPTION = "Clinical safety rule engine for drug-food interactions, allergens and dietary contraindications"


def read_file(filename: str) -> str:
    """Read content from a file next to this script, or return an empty string."""
    file_path = Path(__file__).parent / filename
    if file_path.exists():
        return file_path.read_text(encoding="utf-8")
    return ""


# Runtime dependencies: models and configuration, snapshot files, logging and CLI
INSTALL_REQUIRES = [
    "pydantic>=2.5.0",
    "pydantic-settings>=2.1.0",
    "PyYAML>=6.0.0",
    "structlog>=23.2.0",
    "rich>=13.7.0",
    "typer>=0.9.0",
]

CLASSIFIERS = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Healthcare Industry",
    "Intended Audience :: Developers",
    "License :: OSI Approved :: MIT License",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3 :: Only",
    "Topic :: Scientific/Engineering :: Medical Science Apps.",
]

TEST_REQUIRE = [
    "pytest>=7.0.0",
    "pytest-cov>=4.0.0",
    "pytest-mock>=3.10.0",
]

EXTRAS_REQUIRE = {
    "test": TEST_REQUIRE,
    "dev": [
        *TEST_REQUIRE,
        "black>=23.0.0",
        "flake8>=6.0.0",
        "mypy>=1.0.0",
        "isort>=5.12.0",
    ],
}

EXTRAS_REQUIRE["all"] = sorted({dep for deps in EXTRAS_REQUIRE.values() for dep in deps})

ENTRY_POINTS = {
    "console_scripts": [
        "nutrisafe=nutrisafe.cli:app",
    ],
}

# Knowledge base snapshot and regression corpus ship with the package
PACKAGE_DATA = {
    "nutrisafe.knowledge": ["data/*.yaml"],
    "nutrisafe.evaluation": ["data/*.yaml"],
}

if __name__ == "__main__":
    setup(
        name=PACKAGE_NAME,
        version=VERSION,
        author=AUTHOR,
        author_email=AUTHOR_EMAIL,
        description=DESCRIPTION,
        long_description=read_file("README.md"),
        long_description_content_type="text/markdown",
        url=URL,
        packages=find_packages(include=["nutrisafe", "nutrisafe.*"]),
        python_requires=">=3.11",
        install_requires=INSTALL_REQUIRES,
        extras_require=EXTRAS_REQUIRE,
        classifiers=CLASSIFIERS,
        keywords="clinical safety drug-food interactions allergens nutrition rule engine",
        project_urls={
            "Bug Reports": f"{URL}/issues",
            "Source": URL,
        },
        entry_points=ENTRY_POINTS,
        include_package_data=True,
        package_data=PACKAGE_DATA,
        zip_safe=False,
        platforms=["any"],
        license="MIT",
    )
