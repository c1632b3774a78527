import pytest

from claimrunner.config import RunConfig

FAKE_FACTORY = "tests.fakes:build_fake_collaborators"


def make_config(tmp_path, **overrides) -> RunConfig:
    values = dict(
        tasks_file=tmp_path / "wallets.txt",
        proxies_file=tmp_path / "proxies.txt",
        output_dir=tmp_path / "out",
        max_attempts=3,
        retry_delay=0,
        task_delay=0,
        batch_delay=0,
        claim_delay=0,
        request_timeout=5,
        exit_grace_seconds=5,
        collaborators=FAKE_FACTORY,
    )
    values.update(overrides)
    return RunConfig(**values)


@pytest.fixture
def config(tmp_path):
    return make_config(tmp_path)
