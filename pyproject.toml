[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "meshstaking"
version = "0.1.0"
description = "Provider-side staking state machines for cross-chain mesh security: external staking with reward distribution and slashing, a validator set CRDT, IBC packet handling and a native staking proxy."
requires-python = ">=3.10"
dependencies = []
keywords = ["staking", "mesh-security", "ibc", "rewards", "slashing", "validators", "crdt"]
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
    "Topic :: Office/Business :: Financial",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["meshstaking"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
