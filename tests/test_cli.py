import pytest
import yaml

from canary import cli
from cluster.backend import CANARY, DEPLOYMENT, VIRTUAL_SERVICE
from cluster.memory import InMemoryBackend
from conftest import NAMESPACE, new_autoscaler, new_canary, new_deployment


@pytest.fixture
def manifests(tmp_path):
    path = tmp_path / "podinfo.yaml"
    path.write_text(yaml.safe_dump_all([new_deployment(), new_autoscaler(), new_canary()]))
    return path


def test_parser_flags():
    args = cli.build_parser().parse_args([
        "--namespace", "test", "--workers", "4", "--log-json", "--dry-run", "-f", "a.yaml", "--once",
    ])
    assert args.namespace == "test"
    assert args.workers == 4
    assert args.log_json is True
    assert args.manifests == ["a.yaml"]
    assert args.once and args.dry_run


def test_load_manifests_reads_all_documents(manifests):
    objects = cli.load_manifests([str(manifests)])
    assert [o["kind"] for o in objects] == ["Deployment", "HorizontalPodAutoscaler", "Canary"]


def test_dry_run_once_reconciles_in_memory(manifests, monkeypatch):
    backends = []
    build = cli.build_backend

    def capture(args, config):
        backend = build(args, config)
        backends.append(backend)
        return backend

    monkeypatch.setattr(cli, "build_backend", capture)
    monkeypatch.setattr(cli, "setup_logging", lambda *a, **k: None)

    code = cli.main(["--dry-run", "-f", str(manifests), "--once", "--metrics-server", "http://127.0.0.1:1"])

    assert code == 0
    [backend] = backends
    assert isinstance(backend, InMemoryBackend)
    backend.get(DEPLOYMENT, NAMESPACE, "podinfo-primary")
    backend.get(VIRTUAL_SERVICE, NAMESPACE, "podinfo")
    assert backend.get(CANARY, NAMESPACE, "podinfo")["status"]["phase"] == "Initialized"


def test_invalid_config_exits_2(tmp_path, capsys):
    path = tmp_path / "bad.yaml"
    path.write_text("workers: 0\n")

    assert cli.main(["--config", str(path)]) == 2
    assert "invalid configuration" in capsys.readouterr().err
