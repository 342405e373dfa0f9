"""
Setup file.
"""

from setuptools import find_packages, setup

KEYWORDS = "build multi-architecture cross-compile flight-software tables coverage orchestrator"


if __name__ == "__main__":
    setup(
        name="archbuild",
        version="0.1.0",
        description="Dependency-aware multi-architecture build orchestrator for modular component frameworks",
        keywords=KEYWORDS,
        package_dir={"": "src"},
        packages=find_packages(where="src"),
        python_requires=">=3.10",
        install_requires=[
            "psutil",
            "tqdm",
        ],
        extras_require={
            "test": ["pytest"],
        },
        entry_points={
            "console_scripts": ["archbuild=archbuild.cli:main"],
        },
        include_package_data=True)
