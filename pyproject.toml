[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "xvsim"
version = "0.1.0"
description = "A simulation of a small teaching Unix kernel's file system, memory and console layers, with its user tools"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "filesystem",
    "simulation",
    "operating-systems",
    "journaling",
    "page-table",
    "education",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Education",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Filesystems",
    "Topic :: Education",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
xvsim-mkfs = "xvsim.mkfs:main"
xvsim-grep = "xvsim.grep:main"
xvsim-wc = "xvsim.wc:main"
xvsim-cat = "xvsim.tools:cat_main"
xvsim-echo = "xvsim.tools:echo_main"

[tool.hatch.build.targets.wheel]
packages = ["xvsim"]

[tool.hatch.build.targets.sdist]
include = ["xvsim", "tests", "pyproject.toml"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
