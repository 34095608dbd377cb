[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "lsproto"
version = "0.1.0"
description = "A small framework for building Language Server Protocol servers over JSON-RPC"
requires-python = ">=3.10"
dependencies = []
keywords = ["lsp", "language-server", "json-rpc", "protocol", "editor"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Software Development :: Libraries :: Application Frameworks",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
lsproto = "lsproto.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["lsproto"]

[tool.pytest.ini_options]
addopts = "-ra"
