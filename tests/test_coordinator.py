import csv

import pytest

from claimrunner.coordinator import (
    Coordinator,
    build_partitions,
    partition_tasks,
    resolve_worker_count,
)
from claimrunner.errors import ConfigurationError
from claimrunner.models import Task
from claimrunner.proxy import parse_proxies

from tests.conftest import make_config


def _tasks(count):
    return [Task(index=i, secret=f"wallet-{i}") for i in range(count)]


def _write_tasks(config, secrets):
    config.tasks_file.write_text("\n".join(secrets) + "\n", encoding="utf-8")


def _read_csv(path):
    with open(path, newline="", encoding="utf-8") as f:
        return list(csv.reader(f))


def test_partition_sizes_differ_by_at_most_one():
    chunks = partition_tasks(_tasks(10), 3)
    assert [len(c) for c in chunks] == [4, 3, 3]
    assert [t.index for c in chunks for t in c] == list(range(10))


def test_partition_more_workers_than_tasks():
    chunks = partition_tasks(_tasks(2), 4)
    assert [len(c) for c in chunks] == [1, 1, 0, 0]


def test_resolve_worker_count(tmp_path):
    config = make_config(tmp_path)
    assert resolve_worker_count(config, 0, 5) == 0
    assert resolve_worker_count(make_config(tmp_path, workers=3), 10, 0) == 3
    assert resolve_worker_count(make_config(tmp_path, workers=8), 2, 0) == 2
    assert resolve_worker_count(config, 100, 5) == 5
    assert resolve_worker_count(make_config(tmp_path, worker_cap=4), 100, 50) == 4
    assert 1 <= resolve_worker_count(config, 100, 0) <= 4


def test_build_partitions_assigns_proxies_round_robin(tmp_path):
    config = make_config(tmp_path, workers=3)
    proxies = parse_proxies(["http://a:1", "http://b:2"])
    partitions = build_partitions(_tasks(7), proxies, config)

    assert [p.worker_index for p in partitions] == [0, 1, 2]
    assert [len(p.tasks) for p in partitions] == [3, 2, 2]
    assert [p.proxy.host for p in partitions] == ["a", "b", "a"]


def test_build_partitions_without_proxies(tmp_path):
    config = make_config(tmp_path, workers=2, use_proxies=False)
    partitions = build_partitions(_tasks(3), parse_proxies(["http://a:1"]), config)
    assert all(p.proxy is None for p in partitions)


def test_plan_uses_one_worker_per_proxy(tmp_path):
    config = make_config(tmp_path)
    _write_tasks(config, [f"wallet-{i}" for i in range(6)])
    config.proxies_file.write_text("http://a:1\nhttp://b:2\n", encoding="utf-8")

    partitions = Coordinator(config).plan()
    assert [len(p.tasks) for p in partitions] == [3, 3]


def test_run_processes_every_task_exactly_once(tmp_path):
    config = make_config(tmp_path, workers=3, use_proxies=False)
    _write_tasks(config, [f"wallet-{i}-ok" for i in range(10)])

    summary = Coordinator(config, log_file=tmp_path / "run.log", poll_interval=0.05).run()

    assert summary.total_tasks == 10
    assert summary.status_counts == {"SUCCESS": 10}
    assert summary.missing == []
    assert summary.crashed == []

    rows = _read_csv(summary.report_path)
    assert rows[0][:4] == ["task_id", "status", "fully_processed", "total_items"]
    assert [r[0] for r in rows[1:]] == [f"0xwallet-{i}-ok" for i in range(10)]
    assert summary.failed_path.read_text(encoding="utf-8") == ""
    assert list(config.partial_dir.glob("*.jsonl")) == []

    log_text = (tmp_path / "run.log").read_text(encoding="utf-8")
    for index in range(3):
        assert f"[w{index}]" in log_text


def test_run_writes_retry_candidates_to_failed_list(tmp_path):
    config = make_config(tmp_path, workers=2, use_proxies=False)
    _write_tasks(config, ["w-ok", "w-authfail", "w-empty", "w-broken"])

    summary = Coordinator(config, poll_interval=0.05).run()

    assert summary.status_counts == {
        "SUCCESS": 1,
        "FAILED_TOKEN": 1,
        "NO_UNOPENED_BOXES": 1,
        "FAILED": 1,
    }
    assert summary.failed_path.read_text(encoding="utf-8").splitlines() == ["w-authfail", "w-broken"]


def test_crashed_workers_leave_their_tasks_in_failed_list(tmp_path):
    config = make_config(
        tmp_path,
        workers=2,
        use_proxies=False,
        collaborators="tests.fakes:build_broken_collaborators",
    )
    _write_tasks(config, ["w-a", "w-b", "w-c"])

    summary = Coordinator(config, poll_interval=0.05).run()

    assert summary.crashed == [0, 1]
    assert summary.missing == [0, 1, 2]
    assert summary.status_counts == {}
    assert _read_csv(summary.report_path)[1:] == []
    assert summary.failed_path.read_text(encoding="utf-8").splitlines() == ["w-a", "w-b", "w-c"]


def test_empty_task_list_still_writes_report(tmp_path):
    config = make_config(tmp_path, use_proxies=False)
    _write_tasks(config, ["# nothing to do"])

    summary = Coordinator(config).run()

    assert summary.total_tasks == 0
    assert len(_read_csv(summary.report_path)) == 1


def test_stale_partials_block_a_new_run(tmp_path):
    config = make_config(tmp_path, use_proxies=False)
    _write_tasks(config, ["w-ok"])
    config.partial_dir.mkdir(parents=True)
    (config.partial_dir / "worker-0.jsonl").write_bytes(b"")

    with pytest.raises(ConfigurationError):
        Coordinator(config).run()


def test_unresolvable_factory_is_fatal_before_spawning(tmp_path):
    config = make_config(tmp_path, collaborators="tests.fakes:does_not_exist")
    _write_tasks(config, ["w-ok"])

    with pytest.raises(ConfigurationError):
        Coordinator(config).run()
    assert not config.partial_dir.exists()
