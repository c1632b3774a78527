import asyncio

import orjson

from claimrunner.models import ResultCode, TaskResult
from claimrunner.sink import ResultSink, partial_path


def _result(index, status=ResultCode.SUCCESS):
    return TaskResult(task_index=index, task_id=f"0x{index}", worker_index=0, status=status)


def test_partial_path(tmp_path):
    assert partial_path(tmp_path, 3) == tmp_path / "worker-3.jsonl"


def test_append_writes_one_line_per_record(tmp_path):
    path = tmp_path / "partial" / "worker-0.jsonl"
    with ResultSink(path) as sink:
        assert asyncio.run(sink.append(_result(0)))
        assert asyncio.run(sink.append(_result(1, ResultCode.FAILED)))
        assert sink.written == 2

    lines = path.read_bytes().splitlines()
    assert [orjson.loads(line)["status"] for line in lines] == ["SUCCESS", "FAILED"]


def test_append_survives_reopen(tmp_path):
    path = tmp_path / "worker-0.jsonl"
    with ResultSink(path) as sink:
        asyncio.run(sink.append(_result(0)))
    with ResultSink(path) as sink:
        asyncio.run(sink.append(_result(1)))
    assert len(path.read_bytes().splitlines()) == 2


def test_transient_write_error_is_retried(tmp_path, monkeypatch):
    sink = ResultSink(tmp_path / "worker-0.jsonl", backoff=0)
    real_write = sink._write
    failures = iter([OSError("disk busy")])

    def flaky_write(line):
        error = next(failures, None)
        if error is not None:
            raise error
        real_write(line)

    monkeypatch.setattr(sink, "_write", flaky_write)
    assert asyncio.run(sink.append(_result(0)))
    sink.close()
    assert sink.written == 1
    assert len((tmp_path / "worker-0.jsonl").read_bytes().splitlines()) == 1


def test_persistent_write_error_drops_record(tmp_path, monkeypatch, caplog):
    sink = ResultSink(tmp_path / "worker-0.jsonl", max_attempts=2, backoff=0)
    calls = []

    def broken_write(line):
        calls.append(line)
        raise OSError("disk full")

    monkeypatch.setattr(sink, "_write", broken_write)
    assert asyncio.run(sink.append(_result(4))) is False
    assert len(calls) == 2
    assert sink.dropped == 1
    assert sink.written == 0
    assert "Dropped result for task 4" in caplog.text
