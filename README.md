# raftlab

Building blocks for experimenting with the Raft consensus protocol and with
sharded key/value configurations. Everything is plain Python with no
third-party dependencies. The socket RPC layer uses UNIX-domain sockets, so a
POSIX system is needed.

## Modules

- `raftlab.raft`: a Raft peer (`Raft`, created and started with `make`)
  that holds elections and sends heartbeats from a background ticker thread.
- `raftlab.raftapi`: the `RaftApi` interface (`start`, `get_state`,
  `snapshot`, `persist_bytes`) and `ApplyMsg`, with the constructors
  `ApplyMsg.command_msg` and `ApplyMsg.snapshot_msg`.
- `raftlab.persister`: `Persister`, an in-memory, thread-safe store that holds
  Raft state and a snapshot and saves them together.
- `raftlab.shardcfg`: `ShardConfig`, an assignment of `NSHARDS` (12) shards to
  groups, plus `key_to_shard` and the argument and reply records for
  freezing, installing and deleting shards.
- `raftlab.transport`: length-prefixed, tagged frames over a socket
  (`Transport`), the `encode`/`decode` wire format, and `CallMap` for tracking
  outstanding calls.
- `raftlab.demux`: `DemuxClient` and `DemuxServer`, which run many concurrent
  calls over one connection and match replies by tag.
- `raftlab.sockrpc`: `RPCClient` and `RPCServer`, which provide named
  `"Service.Method"` calls over UNIX sockets. `sock_name` gives the socket
  path for an end name.
- `raftlab.annotation`: `Annotator`, a timeline of point, interval and
  continuous events, checker results and server faults. It can also be
  written out as an HTML file. A shared instance is available as
  `raftlab.annotation.annotator`.
- `raftlab.annotator`: `AnnotatorClient` posts events to a remote tester's
  timeline. `AnnotatorService` holds the tester-side handlers, and
  `TesterClient` is a server's connection to the tester.
- `raftlab.proxy`: `RaftProxy`, through which a tester calls a Raft server,
  and `TesterProxy`, through which a server reports back to the tester.
- `raftlab.server`: `RaftServer` and `new_raft_server`, which pair a Raft peer
  with an applier that checks applied entries with the tester and can take
  and restore snapshots (`encode_snapshot`, `decode_snapshot`).

## Installing

    pip install .

To run the tests:

    pip install ".[test]"
    pytest

## Shard configurations

    from raftlab.shardcfg import ShardConfig, key_to_shard

    cfg = ShardConfig()
    cfg.join_balance({1: ["x", "y", "z"]})
    cfg.join_balance({2: ["a", "b", "c"]})
    cfg.check_config([1, 2])          # raises ConfigError if unbalanced or wrong

    gid, servers, found = cfg.gid_servers(key_to_shard("some-key"))

    text = cfg.to_json()
    assert ShardConfig.from_json(text).shards == cfg.shards

Each successful `join` or `leave` increments `num`. Both methods return
`False` when a group is already present or already absent. A join that would
put one server into two groups raises `ConfigError`. `rebalance` moves shards
one at a time from the most loaded group to the least loaded group until the
counts differ by at most one. With no groups, every shard goes to group 0.

## Persisting state

    from raftlab.persister import Persister

    p = Persister()
    p.save(b"state", b"snap")
    copy = p.checkpoint()
    assert copy.read_raft_state() == b"state"
    assert p.snapshot_size() == 4

## RPC over UNIX sockets

An `RPCServer` listens on `sock_name(name)`, which is a path under `/tmp`.
It dispatches `"Service.Method"` to the service registered under that name.
By default, a service is registered under its class name. The handler
receives the decoded argument, and its return value becomes the reply.

    from raftlab.sockrpc import RPCServer, RPCClient

    class Echo:
        def Say(self, args):
            return args

    with RPCServer("echo-srv") as srv:
        srv.add_service(Echo())
        with RPCClient("echo-clnt", "echo-srv") as clnt:
            assert clnt.call("Echo.Say", "hi") == "hi"

`RPCClient.call` raises `RPCError` when the call fails. `RPCClient.rpc`
works on encoded bytes and returns `(reply, ok)` instead of raising. Values
are serialized with `pickle`, so only connect processes you trust.

## Raft peers

`make(peers, me, persister, apply_queue)` creates a `Raft` and starts its
ticker. Each entry in `peers` needs a `call(method, args)` method that returns
the reply, or returns `None` or raises `ConnectionError` on failure. The peer
calls `"Raft.RequestVote"` with `RequestVoteArgs` and `"Raft.AppendEntries"`
with `AppendEntriesArgs`. The handlers for these are `Raft.request_vote` and
`Raft.append_entries`. `get_state()` returns `(term, is_leader)`, and
`kill()` stops the ticker. Term, vote and log are saved through the
`Persister` and restored when a peer is created from saved state.

## What the package does not do

- Log replication is not implemented. `Raft.start` returns
  `(-1, term, is_leader)` and does not append or replicate the command.
  Nothing is ever put on the apply queue, so a `RaftServer` applier receives
  only what you place there yourself. `Raft.snapshot` stores the snapshot but
  does not trim the log.
- There is no tester that launches server processes, simulates a lossy
  network or runs end-to-end Raft tests.
- There is no shard controller, sharded key/value clerk or shard group
  server. Only the configuration logic and the shard RPC records are
  provided.
- There are no command-line programs.