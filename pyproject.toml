[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "raftlab"
version = "0.1.0"
description = "A Raft peer with leader election, shard configuration tools and a UNIX-socket RPC harness"
requires-python = ">=3.10"
dependencies = []
keywords = ["raft", "consensus", "leader-election", "sharding", "rpc", "distributed-systems"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["raftlab"]

[tool.pytest.ini_options]
addopts = "-ra"
