import uuid

import pytest

from raftlab.annotation import Annotator, Color, Tag, timestamp
from raftlab.annotator import (
    SERVICE,
    AnnotatorClient,
    AnnotatorService,
    GetAnnotatorTimestampArgs,
    PostAnnotatorPointArgs,
    TesterClient,
)
from raftlab.sockrpc import RPCClient, RPCError, RPCServer


@pytest.fixture
def setup():
    ann = Annotator()
    srv = RPCServer("t-" + uuid.uuid4().hex[:12])
    srv.add_service(AnnotatorService(ann), SERVICE)
    clnt = RPCClient("server-end", srv.name())
    yield ann, clnt
    clnt.close()
    srv.close()


def test_annotate_records_user_point(setup):
    ann, clnt = setup
    AnnotatorClient(clnt).annotate("tag1", "desc", "more")
    recorded = ann.annotations
    assert len(recorded) == 1
    a = recorded[0]
    assert (a.tag, a.description, a.details) == ("tag1", "desc", "more")
    assert a.background_color == Color.USER.value
    assert a.end == 0


def test_get_timestamp_is_current(setup):
    _, clnt = setup
    before = timestamp()
    ts = AnnotatorClient(clnt).get_timestamp()
    after = timestamp()
    assert before <= ts <= after


def test_post_info_interval(setup):
    ann, clnt = setup
    client = AnnotatorClient(clnt)
    start = client.get_timestamp()
    client.post_info_interval(start, "snap", "snapshot details")
    (a,) = ann.annotations
    assert a.tag == Tag.INFO.value
    assert a.start == start
    assert a.end >= start
    assert a.background_color == Color.INFO.value
    assert a.description == "snap"


def test_works_through_tester_client(setup):
    ann, clnt = setup
    AnnotatorClient(TesterClient(clnt)).annotate("x", "y", "z")
    assert [a.tag for a in ann.annotations] == ["x"]


def test_tester_client_call_and_error(setup):
    _, clnt = setup
    tc = TesterClient(clnt)
    reply = tc.call(f"{SERVICE}.GetAnnotatorTimestamp", GetAnnotatorTimestampArgs())
    assert reply.timestamp > 0
    with pytest.raises(RPCError):
        tc.call(f"{SERVICE}.Missing", None)


def test_unreachable_tester_gives_zero_timestamp(setup):
    ann, clnt = setup
    client = AnnotatorClient(clnt)
    clnt.close()
    assert client.get_timestamp() == 0
    client.annotate("a", "b", "c")
    assert ann.annotations == []


def test_service_directly():
    ann = Annotator()
    svc = AnnotatorService(ann)
    svc.PostAnnotatorPoint(PostAnnotatorPointArgs("t", "d", "e"))
    assert [(a.tag, a.details) for a in ann.annotations] == [("t", "e")]
    before = timestamp()
    assert svc.GetAnnotatorTimestamp(GetAnnotatorTimestampArgs()).timestamp >= before