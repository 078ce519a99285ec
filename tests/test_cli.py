from __future__ import annotations

from pathlib import Path
from unittest.mock import Mock

import pytest
import yaml
from click.testing import CliRunner, Result
from kubernetes.client import ApiException

from pvsync.cli import build_cli
from pvsync.k8s import ClusterClients
from pvsync.models import RelationshipKind
from pvsync.relationship import RelationshipStore


@pytest.fixture
def clients(monkeypatch: pytest.MonkeyPatch) -> ClusterClients:
    clients = ClusterClients(context="clusterA", api_client=Mock(), core_api=Mock(), custom_api=Mock())
    clients.core_api.read_namespaced_persistent_volume_claim.side_effect = ApiException(status=404, reason="Not Found")
    factory = Mock(return_value=clients)
    monkeypatch.setattr("pvsync.cli.ClusterClientFactory", Mock(return_value=factory))
    return clients


def _invoke(config_dir: Path, *args: str) -> Result:
    return CliRunner().invoke(build_cli(), ["--config-dir", str(config_dir), *args])


def test_migration_create_prints_connection_details_and_saves_relationship(
    tmp_path: Path,
    clients: ClusterClients,
) -> None:
    clients.custom_api.get_namespaced_custom_object.return_value = {
        "status": {"rsync": {"address": "10.0.0.12", "port": 2222, "sshKeys": "volsync-rsync-dst-src"}}
    }

    result = _invoke(
        tmp_path,
        "migration",
        "-r",
        "mig1",
        "create",
        "--pvcname",
        "clusterA/ns1/vol1",
        "--servicetype",
        "ClusterIP",
        "--capacity",
        "10Gi",
    )

    assert result.exit_code == 0, result.output
    assert "Migration destination ns1/ns1-vol1-migration-dest is ready" in result.output
    assert "10.0.0.12" in result.output
    assert "2222" in result.output
    assert RelationshipStore(tmp_path).exists("mig1", RelationshipKind.MIGRATION)


def test_migration_show_prints_stored_document(tmp_path: Path, clients: ClusterClients) -> None:
    clients.custom_api.get_namespaced_custom_object.return_value = {
        "status": {"rsync": {"address": "10.0.0.12", "sshKeys": "keys"}}
    }
    created = _invoke(
        tmp_path, "migration", "-r", "mig1", "create", "--pvcname", "ns1/vol1", "--servicetype", "NodePort",
        "--capacity", "1Gi",
    )
    assert created.exit_code == 0, created.output

    result = _invoke(tmp_path, "--log-level", "error", "migration", "-r", "mig1", "show")

    assert result.exit_code == 0, result.output
    document = yaml.safe_load(result.stdout)
    assert document["type"] == "migration"
    assert document["data"]["destination"]["rsync"]["address"] == "10.0.0.12"


def test_pv_backup_create_reports_schedule_and_removes_credentials(
    tmp_path: Path,
    clients: ClusterClients,
) -> None:
    clients.custom_api.get_namespaced_custom_object.return_value = {"status": {}}
    credential_path = tmp_path / "restic-config"
    credential_path.write_text(
        "AWS_ACCESS_KEY_ID=access\n"
        "AWS_SECRET_ACCESS_KEY=secret\n"
        "RESTIC_REPOSITORY=s3:https://s3.example.com/bucket\n"
        "RESTIC_PASSWORD=hunter2\n"
    )

    result = _invoke(
        tmp_path / "relationships",
        "pv-backup",
        "-r",
        "bk1",
        "create",
        "--name",
        "nightly",
        "--pvcname",
        "ns1/vol1",
        "--restic-config",
        str(credential_path),
        "--cronspec",
        "0 2 * * *",
    )

    assert result.exit_code == 0, result.output
    assert "Backup nightly of ns1/vol1 created (0 2 * * *)" in result.output
    assert not credential_path.exists()


def test_create_with_unsupported_option_exits_with_error_before_cluster_access(
    tmp_path: Path,
    clients: ClusterClients,
) -> None:
    result = _invoke(
        tmp_path, "migration", "-r", "mig1", "create", "--pvcname", "ns1/vol1", "--servicetype", "Ingress",
    )

    assert result.exit_code == 1
    assert "servicetype" in result.output
    clients.core_api.create_namespace.assert_not_called()


def test_show_missing_relationship_exits_with_error(tmp_path: Path) -> None:
    result = _invoke(tmp_path, "pv-backup", "-r", "absent", "show")

    assert result.exit_code == 1
    assert "not found" in result.output


def test_relationship_option_is_required(tmp_path: Path) -> None:
    result = _invoke(tmp_path, "migration", "show")

    assert result.exit_code == 2
    assert "--relationship" in result.output
