[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "dagsim"
version = "0.1.0"
description = "Discrete-event simulator for DAG-based blockchains with pivot-chain selection and simple, peer and Bitcoin-style network models"
requires-python = ">=3.10"
dependencies = []
keywords = ["blockchain", "dag", "simulation", "consensus", "discrete-event", "network"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
    "Topic :: Scientific/Engineering",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
dagsim = "dagsim.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["dagsim"]

[tool.pytest.ini_options]
addopts = "-ra"
