import os
import uuid

import pytest

from raftlab.sockrpc import RPCClient, RPCError, RPCServer, sock_name
from raftlab.transport import encode, decode


class Calc:
    def Add(self, args):
        return args[0] + args[1]

    def Fail(self, args):
        raise RuntimeError("boom")

    def _hidden(self, args):
        return args


def unique():
    return "t-" + uuid.uuid4().hex[:12]


@pytest.fixture
def server():
    srv = RPCServer(unique())
    srv.add_service(Calc(), "Calc")
    yield srv
    srv.close()


@pytest.fixture
def client(server):
    clnt = RPCClient("tester", server.name())
    yield clnt
    clnt.close()


def test_sock_name_prefix():
    assert sock_name("abc") == "/tmp/6.5840-abc"


def test_server_creates_socket_file(server):
    path = sock_name(server.name())
    assert path == "/tmp/6.5840-" + server.name()
    assert os.path.exists(path)


def test_client_knows_server(client, server):
    assert client.server() == server.name()


def test_call_round_trip(client):
    assert client.call("Calc.Add", (2, 3)) == 5
    assert client.call("Calc.Add", ("ab", "cd")) == "abcd"


def test_raw_rpc(client):
    rep, ok = client.rpc("Calc.Add", encode((10, 1)))
    assert ok is True
    assert decode(rep) == 11


def test_unknown_method_fails(client):
    assert client.rpc("Calc.Nope", encode(None)) == (None, False)
    with pytest.raises(RPCError):
        client.call("Other.Add", (1, 2))


def test_private_method_not_callable(client):
    with pytest.raises(RPCError):
        client.call("Calc._hidden", 1)


def test_handler_exception_fails_call(client):
    with pytest.raises(RPCError):
        client.call("Calc.Fail", None)


def test_default_service_name():
    srv = RPCServer(unique())
    try:
        srv.add_service(Calc())
        with RPCClient("tester", srv.name()) as clnt:
            assert clnt.call("Calc.Add", (4, 4)) == 8
    finally:
        srv.close()


def test_closed_client_fails(client):
    client.close()
    assert client.rpc("Calc.Add", encode((1, 1))) == (None, False)


def test_close_removes_socket_and_refuses_clients():
    srv = RPCServer(unique())
    name = srv.name()
    srv.close()
    assert not os.path.exists(sock_name(name))
    with pytest.raises(ConnectionError):
        RPCClient("tester", name, retries=2, delay=0.01)


def test_server_close_fails_connected_client():
    srv = RPCServer(unique())
    srv.add_service(Calc(), "Calc")
    clnt = RPCClient("tester", srv.name())
    assert clnt.call("Calc.Add", (1, 2)) == 3
    srv.close()
    with pytest.raises(RPCError):
        clnt.call("Calc.Add", (1, 2))
    clnt.close()