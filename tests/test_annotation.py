import json
import re

import pytest

from raftlab.annotation import Annotation, Annotator, Color, Tag, timestamp


@pytest.fixture
def an():
    a = Annotator()
    a.begin_test("demo", 3)
    return a


def test_recorded_colors_and_tags_match_format(an):
    an.checker_success("ok", "fine")
    a = an.annotations[-1]
    assert a.background_color == "#C8E6C9"
    assert a.tag == "$ Checker"
    an.two_partitions([0], [1, 2])
    result = an.finalize("end")
    assert any(x.tag == "$ Failure" for x in result)


def test_begin_test_records_info(an):
    anns = an.annotations
    assert len(anns) == 1
    assert anns[0].tag == Tag.INFO.value
    assert anns[0].description == "demo (3 servers)"
    assert anns[0].background_color == Color.INFO.value


def test_point_and_interval(an):
    start = timestamp()
    an.point("t", "d", "x")
    an.interval("t", start, "d2", "y", Color.FAULT)
    anns = an.annotations[1:]
    assert anns[0].end == 0
    assert anns[0].background_color == Color.USER.value
    assert anns[1].start == start
    assert anns[1].end >= start
    assert anns[1].background_color == Color.FAULT.value


def test_continuous_replaced_and_ended(an):
    an.continuous("c", "one", "one")
    assert len(an.annotations) == 1
    an.continuous("c", "two", "two")
    anns = an.annotations
    assert anns[-1].description == "one"
    assert anns[-1].end >= anns[-1].start
    an.continuous_end("c")
    assert an.annotations[-1].description == "two"
    n = len(an.annotations)
    an.continuous_end("c")
    assert len(an.annotations) == n


def test_finalize_closes_ongoing(an):
    an.continuous("c", "on", "on")
    result = an.finalize("done")
    assert result[-1].description == "done"
    assert any(a.description == "on" and a.end > 0 for a in result)
    assert an.is_finalized()


def test_checker_interval_then_point(an):
    an.checker_begin("checking")
    an.checker_success("ok", "fine")
    a = an.annotations[-1]
    assert a.tag == Tag.CHECKER.value
    assert a.details == "checking: fine"
    assert a.end > 0
    an.checker_failure("bad", "oops")
    b = an.annotations[-1]
    assert b.end == 0
    assert b.details == "oops"
    assert b.background_color == Color.FAILURE.value


def test_shutdown_and_restart(an):
    an.shutdown([1])
    an.continuous_end(Tag.PARTITION)
    text = an.annotations[-1].description
    assert text.startswith("partition = ")
    assert text.endswith(" / crash = [1]")
    an.shutdown([1])
    an.restart([1])
    an.shutdown_all()
    an.restart_all()
    assert an.annotations[-1].tag == Tag.PARTITION.value


def test_connection_unchanged_is_noop(an):
    n = len(an.annotations)
    an.connection([True, True, True])
    assert len(an.annotations) == n
    an.connection([True, False, True])
    an.clear_failure()
    last = an.annotations[-1]
    assert last.description == "partition = [1] [0 2]"


def test_two_partitions(an):
    an.two_partitions([0, 1], [2])
    result = an.finalize("end")
    assert any(a.description == "partition = [0 1] [2]" for a in result)


def test_shutdown_out_of_range(an):
    with pytest.raises(IndexError):
        an.shutdown([5])


def test_cleanup_never_clears(an, monkeypatch):
    monkeypatch.setenv("VIS_ENABLE", "never")
    assert an.cleanup(True, "failed") is None
    assert an.annotations == []


def test_cleanup_writes_file(an, tmp_path, monkeypatch):
    path = tmp_path / "vis.html"
    monkeypatch.setenv("VIS_ENABLE", "always")
    monkeypatch.setenv("VIS_FILE", str(path))
    an.info("hello", "world")
    assert an.cleanup(False, "passed") == str(path)
    content = path.read_text()
    blob = re.search(r'id="annotations">(.*)</script>', content).group(1)
    data = json.loads(blob)
    assert data[-1]["description"] == "passed"
    assert any(d["description"] == "hello" for d in data)
    assert an.is_finalized()
    assert an.cleanup(True, "again") is None


def test_cleanup_passed_without_always(an, monkeypatch):
    monkeypatch.delenv("VIS_ENABLE", raising=False)
    assert an.cleanup(False, "passed") is None
    assert not an.is_finalized()


def test_annotation_dataclass_default_end():
    a = Annotation("t", 5, "d", "x", Color.INFO.value)
    assert a.end == 0
    assert a.start == 5