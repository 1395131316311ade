[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "frconform"
version = "0.1.0"
description = "Conformance contracts, structured test logs and readiness gates for a key-value server's event loop, key expiry and packet artifacts"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "conformance",
    "testing",
    "structured-logging",
    "event-loop",
    "readiness-gate",
    "jsonl",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Testing",
    "Topic :: Software Development :: Quality Assurance",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
frconform-schema-gate = "frconform.schema_gate_cli:main"
frconform-journey-gate = "frconform.journey_gate:main"

[tool.hatch.build.targets.wheel]
packages = ["frconform"]

[tool.hatch.build.targets.sdist]
include = ["frconform", "tests", "pyproject.toml", "README.md"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
files = ["frconform"]
