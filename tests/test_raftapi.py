import pytest

from raftlab.raftapi import ApplyMsg, RaftApi


def test_command_msg_fields():
    m = ApplyMsg.command_msg("cmd", 7)
    assert m.command_valid is True
    assert m.command == "cmd"
    assert m.command_index == 7
    assert m.snapshot_valid is False
    assert m.snapshot is None


def test_snapshot_msg_fields():
    m = ApplyMsg.snapshot_msg(b"snap", 3, 9)
    assert m.snapshot_valid is True
    assert m.command_valid is False
    assert m.snapshot == b"snap"
    assert m.snapshot_term == 3
    assert m.snapshot_index == 9


def test_default_msg_has_neither_valid():
    m = ApplyMsg()
    assert (m.command_valid, m.snapshot_valid) == (False, False)


def test_raftapi_is_abstract():
    with pytest.raises(TypeError):
        RaftApi()


def test_raftapi_subclass_works():
    class Fake(RaftApi):
        def start(self, command):
            return 1, 2, True

        def get_state(self):
            return 2, True

        def snapshot(self, index, snapshot):
            self.snap = (index, snapshot)

        def persist_bytes(self):
            return 0

    f = Fake()
    msg = ApplyMsg.snapshot_msg(b"s", 1, 5)
    f.snapshot(msg.snapshot_index, msg.snapshot)
    assert f.snap == (5, b"s")
    cmd = ApplyMsg.command_msg("x", 1)
    assert f.start(cmd.command) == (1, 2, True)
    assert f.get_state() == (2, True)