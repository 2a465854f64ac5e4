"""
Setup script for OpsGuard Core
"""
from setuptools import setup, find_packages


setup(
    name="opsguard-core",
    version="1.0.0",
    description="Filesystem locks, deadlines and cleanup coordination for automation scripts",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.9",
    install_requires=[
        "psutil>=5.9",
        "PyYAML>=6.0",
        "rich>=13.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
        ],
    },
    entry_points={
        "console_scripts": [
            "opsguard=opsguard_core.cli:main",
            "opsguard-lock=opsguard_core.cli:lock",
            "opsguard-timeout=opsguard_core.cli:with_timeout",
            "opsguard-cleanup=opsguard_core.cli:cleanup_trap",
            "opsguard-retry=opsguard_core.cli:retry",
        ],
    },
    zip_safe=False,
)
