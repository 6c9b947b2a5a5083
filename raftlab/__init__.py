"""A Raft peer with leader election, shard configurations, and a UNIX-socket RPC and annotation harness."""

__version__ = "0.1.0"