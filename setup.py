from __future__ import annotations

import os
import re
from pathlib import Path

import tomllib

from setuptools import find_packages, setup

root = Path(__file__).resolve().parent


def read_version() -> str:
    pyproject = root / "pyproject.toml"

    with pyproject.open("rb") as handle:
        data = tomllib.load(handle)
    return data["tool"]["datasmith"]["version"]


version = read_version()
suffix = os.environ.get("DATASMITH_BUILD_SUFFIX", "").strip()
if suffix:
    normalized_suffix = re.sub(r"[^0-9A-Za-z.-]", "-", suffix)
    version = f"{version}+{normalized_suffix}"

setup(
    version=version,
    package_dir={"": "src"},
    packages=find_packages("src"),
)
