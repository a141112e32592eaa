from pathlib import Path
from urllib.parse import urlsplit

import pytest
from typer.testing import CliRunner

import volstore.cli.app as cli
from conftest import FakeWorkloadClient, make_deployment

runner = CliRunner()

LOCATION = """
apiVersion: velero.io/v1
kind: BackupStorageLocation
spec:
  provider: replicated.com/hostpath
  objectStorage:
    bucket: local
    prefix: velero
  config:
    path: /data/backups
"""


@pytest.fixture(autouse=True)
def env(monkeypatch, root: Path):
    monkeypatch.setenv("LOCAL_VOLUME_ROOT", str(root))
    monkeypatch.setenv("VELERO_NAMESPACE", "velero")
    monkeypatch.setenv("POD_IP", "10.0.0.5")
    monkeypatch.setenv("LOCAL_VOLUME_SIGNING_SECRET", "s3cr3t")


@pytest.fixture
def bucket(root: Path) -> Path:
    b = root / "local"
    b.mkdir()
    return b


def test_put_get_ls_rm(bucket: Path, tmp_path: Path):
    src = tmp_path / "b1.tar.gz"
    src.write_bytes(b"tarball")

    assert runner.invoke(cli.app, ["put", "local", "backups/b1/b1.tar.gz", str(src)]).exit_code == 0
    assert (bucket / "backups" / "b1" / "b1.tar.gz").read_bytes() == b"tarball"

    out = tmp_path / "out"
    res = runner.invoke(cli.app, ["get", "local", "backups/b1/b1.tar.gz", "-o", str(out)])
    assert res.exit_code == 0
    assert out.read_bytes() == b"tarball"

    res = runner.invoke(cli.app, ["ls", "local", "backups/b1"])
    assert res.stdout.splitlines() == ["backups/b1/b1.tar.gz"]

    res = runner.invoke(cli.app, ["prefixes", "local", "backups/"])
    assert res.stdout.splitlines() == ["b1"]

    assert runner.invoke(cli.app, ["rm", "local", "backups/b1/b1.tar.gz"]).exit_code == 0
    assert not (bucket / "backups" / "b1").exists()


def test_put_from_stdin_and_get_to_stdout(bucket: Path):
    assert runner.invoke(cli.app, ["put", "local", "k"], input=b"from stdin").exit_code == 0
    res = runner.invoke(cli.app, ["get", "local", "k"])
    assert res.exit_code == 0
    assert res.stdout == "from stdin"


def test_root_option_overrides_environment(tmp_path: Path):
    other = tmp_path / "elsewhere"
    (other / "local").mkdir(parents=True)

    res = runner.invoke(cli.app, ["put", "--root", str(other), "local", "k"], input=b"x")
    assert res.exit_code == 0
    assert (other / "local" / "k").read_bytes() == b"x"


def test_missing_bucket_directory_fails(root: Path):
    res = runner.invoke(cli.app, ["ls", "local"])
    assert res.exit_code == 1


def test_get_missing_object_fails(bucket: Path):
    assert runner.invoke(cli.app, ["get", "local", "nope"]).exit_code == 1


def test_rm_missing_object_fails(bucket: Path):
    assert runner.invoke(cli.app, ["rm", "local", "nope"]).exit_code == 1


def test_sign_url(bucket: Path):
    res = runner.invoke(cli.app, ["sign-url", "local", "backups/b1/b1-logs.gz", "--ttl", "60"])
    assert res.exit_code == 0
    parts = urlsplit(res.stdout.strip())
    assert parts.netloc == "10.0.0.5:3000"
    assert parts.path == "/local/backups/b1/b1-logs.gz"
    assert "signature=" in parts.query


def test_sign_url_without_secret_fails(bucket: Path, monkeypatch):
    monkeypatch.delenv("LOCAL_VOLUME_SIGNING_SECRET")
    assert runner.invoke(cli.app, ["sign-url", "local", "k"]).exit_code == 1


@pytest.fixture
def workloads(monkeypatch) -> FakeWorkloadClient:
    fake = FakeWorkloadClient(make_deployment())
    monkeypatch.setattr(cli, "load_kube_config", lambda context=None: None)
    monkeypatch.setattr(cli, "WorkloadClient", lambda namespace: fake)
    return fake


def test_init_exits_with_restart_code_then_ready(workloads, tmp_path: Path, root: Path):
    location = tmp_path / "bsl.yaml"
    location.write_text(LOCATION)

    res = runner.invoke(cli.app, ["init", str(location)])
    assert res.exit_code == cli.EXIT_RESTART_REQUIRED
    assert "Deployment/velero" in res.stdout

    (root / "local").mkdir()
    res = runner.invoke(cli.app, ["init", str(location)])
    assert res.exit_code == 0
    assert "Ready" in res.stdout
    assert (root / "local" / "velero" / "backups").is_dir()


def test_init_with_bad_location_fails(workloads, tmp_path: Path):
    location = tmp_path / "bsl.yaml"
    location.write_text(LOCATION.replace("    path: /data/backups\n", ""))

    res = runner.invoke(cli.app, ["init", str(location)])
    assert res.exit_code == 1
    assert workloads.reads == []
