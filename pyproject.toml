[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "filesniff"
version = "0.1.0"
description = "Parse, check and rank magic-number rule files, and describe the lines of text content"
requires-python = ">=3.10"
dependencies = []
keywords = ["magic", "file type", "mime", "magic file", "text"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Filesystems",
    "Topic :: Utilities",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
filesniff-magic = "filesniff.loader:main"

[tool.hatch.build.targets.wheel]
packages = ["filesniff"]

[tool.pytest.ini_options]
addopts = "-ra"
