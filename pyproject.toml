[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "reviewhound"
version = "0.1.0"
description = "Post linter and compiler findings that fall inside a diff as code review comments"
requires-python = ">=3.10"
keywords = ["code review", "linter", "diff", "github", "gitlab", "gerrit", "bitbucket"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Quality Assurance",
]
dependencies = [
    "requests",
    "pyyaml",
]

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
]

[project.scripts]
reviewhound-depup = "reviewhound.depup:main"

[tool.hatch.build.targets.wheel]
packages = ["reviewhound"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
