"""
ringmaster_client — Registered clients for shared-memory ring buffers

Attach to a ring buffer as producer or consumer, register with the
RingMaster, and stream a consumer's data to stdout.
"""

from setuptools import setup, find_packages
from pathlib import Path

long_description = (Path(__file__).parent / "README.md").read_text(encoding="utf-8")

setup(
    name="ringmaster-client",
    version="1.0.0",
    description=(
        "RingMaster registration client and ring-to-stdout streamer for "
        "shared-memory ring buffers."
    ),
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests*", "examples*"]),
    python_requires=">=3.10",
    install_requires=[
        "numpy>=1.21",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
            "pytest-timeout",
        ],
    },
    entry_points={
        "console_scripts": [
            "ringtostdout = ringmaster_client.cli:main",
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: POSIX :: Linux",
        "Operating System :: MacOS",
        "Intended Audience :: Developers",
        "Topic :: System :: Networking",
        "Topic :: Software Development :: Libraries :: Python Modules",
    ],
)
