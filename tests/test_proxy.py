import logging
import uuid

import pytest

from raftlab.proxy import (
    ApplyErrArgs,
    CheckLogsArgs,
    CheckLogsReply,
    GetStateArgs,
    GetStateReply,
    IngestLogArgs,
    RaftProxy,
    StartArgs,
    StartReply,
    TesterProxy,
)
from raftlab.raftapi import ApplyMsg
from raftlab.sockrpc import RPCClient, RPCError, RPCServer


class _FakeClient:
    def __init__(self, reply=None):
        self.reply = reply
        self.calls = []

    def call(self, method, args):
        self.calls.append((method, args))
        return self.reply


class _FailingClient:
    def __init__(self):
        self.calls = []

    def call(self, method, args):
        self.calls.append((method, args))
        raise RPCError("down")


def test_get_state_returns_reply_fields():
    client = _FakeClient(GetStateReply(term=4, leader=True))
    assert RaftProxy(client).get_state() == (4, True)
    assert client.calls == [("rfsrv.GetStateRPC", GetStateArgs())]


def test_get_state_failure_gives_zero_reply(caplog):
    caplog.set_level(logging.WARNING, logger="raftlab.proxy")
    assert RaftProxy(_FailingClient()).get_state() == (0, False)
    assert any("rfp.GetState failed" in r.getMessage() for r in caplog.records)


def test_start_sends_command():
    client = _FakeClient(StartReply(index=2, term=3, leader=True))
    assert RaftProxy(client).start("cmd") == (2, 3, True)
    assert client.calls == [("rfsrv.StartRPC", StartArgs(command="cmd"))]


def test_start_failure_gives_zero_reply():
    client = _FailingClient()
    assert RaftProxy(client).start(104) == (0, 0, False)
    assert client.calls[0][0] == "rfsrv.StartRPC"


def test_check_logs_returns_reply():
    msg = ApplyMsg.command_msg(101, 1)
    client = _FakeClient(CheckLogsReply(err="bad", prevok=True))
    assert TesterProxy(client).check_logs(2, msg) == ("bad", True)
    assert client.calls == [("Test.CheckLogsRPC", CheckLogsArgs(index=2, msg=msg))]


def test_check_logs_failure_reports_rpc_error():
    proxy = TesterProxy(_FailingClient())
    assert proxy.check_logs(0, ApplyMsg.command_msg(1, 1)) == ("ErrRPC", False)


def test_ingest_log_sends_copy_of_log():
    client = _FakeClient()
    entries = {0: None, 1: "a"}
    TesterProxy(client).ingest_log(1, entries)
    method, args = client.calls[0]
    assert method == "Test.IngestLogRPC"
    assert args == IngestLogArgs(index=1, log=entries)
    assert args.log is not entries


def test_apply_err_swallows_failure():
    client = _FailingClient()
    TesterProxy(client).apply_err(3, "out of order")
    assert client.calls == [("Test.ApplyErrRPC", ApplyErrArgs(index=3, err="out of order"))]


class _RaftService:
    def __init__(self):
        self.commands = []

    def GetStateRPC(self, args):
        return GetStateReply(term=7, leader=False)

    def StartRPC(self, args):
        self.commands.append(args.command)
        return StartReply(index=len(self.commands), term=7, leader=True)


@pytest.fixture
def rpc_pair():
    name = "proxy-" + uuid.uuid4().hex[:12]
    service = _RaftService()
    server = RPCServer(name)
    server.add_service(service, "rfsrv")
    client = RPCClient("tester-" + uuid.uuid4().hex[:12], name)
    yield service, client
    client.close()
    server.close()


def test_raft_proxy_over_socket(rpc_pair):
    service, client = rpc_pair
    proxy = RaftProxy(client)
    assert proxy.get_state() == (7, False)
    assert proxy.start("x") == (1, 7, True)
    assert proxy.start("y") == (2, 7, True)
    assert service.commands == ["x", "y"]
    assert TesterProxy(client).check_logs(1, ApplyMsg.command_msg("x", 1)) == ("ErrRPC", False)