from __future__ import annotations

from setuptools import find_packages, setup


def load_dependencies() -> list[str]:
    """Assemble install_requires for the anchoring engine."""
    return [
        # Payload validation
        "pydantic>=2.0.0",
    ]


def load_extras() -> dict[str, list[str]]:
    return {
        "test": [
            "pytest>=7.4.0",
        ],
    }


setup(
    name="plantsurveyor",
    version="0.1.0",
    description="Spatial anchoring and position reconstruction for field planting sessions",
    python_requires=">=3.9",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    install_requires=load_dependencies(),
    extras_require=load_extras(),
    entry_points={
        "console_scripts": [
            "plantsurveyor=plantsurveyor.cli:main",
        ],
    },
)
