[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tmfkit"
version = "0.1.0"
description = "In-memory 3MF models with an XML reader and writer for model parts and the beam lattice extension"
requires-python = ">=3.10"
dependencies = []
keywords = ["3mf", "3d-printing", "additive-manufacturing", "mesh", "beam-lattice"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: Manufacturing",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Multimedia :: Graphics :: 3D Modeling",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["tmfkit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
