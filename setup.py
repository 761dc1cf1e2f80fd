"""setuptools 打包配置。"""

from __future__ import annotations

from pathlib import Path

from setuptools import find_packages, setup


ROOT = Path(__file__).resolve().parent
SRC_DIR = ROOT / "src"
VERSION = "0.1.0"

INSTALL_REQUIRES = [
    "pydantic>=2.0",
    "fastapi>=0.100",
    "uvicorn>=0.23",
]

EXTRAS_REQUIRE = {
    "test": [
        "pytest>=7.0",
        "pytest-asyncio>=0.23",
        "httpx>=0.24",
    ],
}


setup(
    name="tabflow",
    version=VERSION,
    description="Inactivity-driven tab grouping engine",
    python_requires=">=3.10",
    packages=find_packages(where=str(SRC_DIR)),
    package_dir={"": "src"},
    install_requires=INSTALL_REQUIRES,
    extras_require=EXTRAS_REQUIRE,
    include_package_data=True,
)
