from __future__ import annotations

from pathlib import Path
from unittest.mock import Mock

import pytest
from kubernetes.client import ApiException

from pvsync.errors import ClusterUnreachable
from pvsync.k8s import (
    ClusterClientFactory,
    format_api_error,
    is_conflict,
    is_not_found,
    load_cluster_clients,
)


def _patch_api_classes(monkeypatch: pytest.MonkeyPatch) -> tuple[Mock, Mock]:
    core_api = Mock()
    custom_api = Mock()
    monkeypatch.setattr("pvsync.k8s.client.CoreV1Api", Mock(return_value=core_api))
    monkeypatch.setattr("pvsync.k8s.client.CustomObjectsApi", Mock(return_value=custom_api))
    return core_api, custom_api


def test_load_cluster_clients_with_kubeconfig_expands_path_and_context(monkeypatch: pytest.MonkeyPatch) -> None:
    api_client = Mock()
    new_client_from_config = Mock(return_value=api_client)
    monkeypatch.setattr("pvsync.k8s.config.new_client_from_config", new_client_from_config)
    core_api, custom_api = _patch_api_classes(monkeypatch)

    clients = load_cluster_clients(context="clusterA", kubeconfig_path="~/kube/config")

    new_client_from_config.assert_called_once_with(
        config_file=str(Path("~/kube/config").expanduser()),
        context="clusterA",
    )
    assert clients.context == "clusterA"
    assert clients.api_client is api_client
    assert clients.core_api is core_api
    assert clients.custom_api is custom_api


def test_load_cluster_clients_with_empty_context_uses_current_context(monkeypatch: pytest.MonkeyPatch) -> None:
    new_client_from_config = Mock(return_value=Mock())
    monkeypatch.setattr("pvsync.k8s.config.new_client_from_config", new_client_from_config)
    _patch_api_classes(monkeypatch)

    load_cluster_clients(context="", kubeconfig_path="   ")

    new_client_from_config.assert_called_once_with(config_file=None, context=None)


def test_load_cluster_clients_with_invalid_context_raises_cluster_unreachable(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(
        "pvsync.k8s.config.new_client_from_config",
        Mock(side_effect=RuntimeError("context not found")),
    )

    with pytest.raises(ClusterUnreachable) as excinfo:
        load_cluster_clients(context="missing", kubeconfig_path="/tmp/kubeconfig")

    message = str(excinfo.value)
    assert "/tmp/kubeconfig" in message
    assert "context 'missing'" in message
    assert "context not found" in message


def test_cluster_client_factory_builds_separate_clients_per_context(monkeypatch: pytest.MonkeyPatch) -> None:
    new_client_from_config = Mock(side_effect=[Mock(), Mock()])
    monkeypatch.setattr("pvsync.k8s.config.new_client_from_config", new_client_from_config)
    _patch_api_classes(monkeypatch)
    factory = ClusterClientFactory("/tmp/kubeconfig")

    first = factory("clusterA")
    second = factory("clusterB")

    assert first.api_client is not second.api_client
    assert [call.kwargs["context"] for call in new_client_from_config.call_args_list] == ["clusterA", "clusterB"]


def test_status_helpers_classify_api_exceptions() -> None:
    assert is_not_found(ApiException(status=404, reason="Not Found"))
    assert is_conflict(ApiException(status=409, reason="Conflict"))
    assert not is_conflict(ApiException(status=500, reason="boom"))
    assert not is_not_found(RuntimeError("404"))


def test_format_api_error_includes_operation_status_and_hint() -> None:
    message = format_api_error(
        operation="create secret 'ns1/nightly'",
        error=ApiException(status=403, reason="Forbidden"),
        hint="Verify RBAC.",
    )

    assert message == "failed to create secret 'ns1/nightly': API status 403 (Forbidden). Verify RBAC."
