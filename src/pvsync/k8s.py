from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from kubernetes import client, config
from kubernetes.client import ApiException

from .errors import ClusterUnreachable


@dataclass(frozen=True)
class ClusterClients:
    context: str
    api_client: client.ApiClient
    core_api: client.CoreV1Api
    custom_api: client.CustomObjectsApi


class ClusterClientFactory:
    """Builds an independent set of API clients for each kubeconfig context."""

    def __init__(self, kubeconfig_path: str | None = None) -> None:
        self.kubeconfig_path = kubeconfig_path

    def __call__(self, context: str) -> ClusterClients:
        return load_cluster_clients(context=context, kubeconfig_path=self.kubeconfig_path)


def load_cluster_clients(*, context: str, kubeconfig_path: str | None = None) -> ClusterClients:
    """Connect to ``context``, or to the kubeconfig's current context when it is empty."""
    expanded = _expand_kubeconfig_path(kubeconfig_path)
    try:
        api_client = config.new_client_from_config(config_file=expanded, context=context or None)
    except Exception as error:  # pylint: disable=broad-except
        raise ClusterUnreachable(
            _format_authentication_error(kubeconfig_path=expanded, context=context, error=error)
        ) from error

    return ClusterClients(
        context=context,
        api_client=api_client,
        core_api=client.CoreV1Api(api_client),
        custom_api=client.CustomObjectsApi(api_client),
    )


def is_not_found(error: Exception) -> bool:
    return isinstance(error, ApiException) and error.status == 404


def is_conflict(error: Exception) -> bool:
    return isinstance(error, ApiException) and error.status == 409


def format_api_error(*, operation: str, error: Exception, hint: str = "") -> str:
    if isinstance(error, ApiException):
        status = error.status if error.status is not None else "unknown"
        reason = error.reason or "no reason provided"
        message = f"failed to {operation}: API status {status} ({reason})"
    else:
        message = f"failed to {operation}: {error_message(error)}"
    return f"{message}. {hint}" if hint else message


def error_message(error: Exception) -> str:
    message = str(error).strip()
    return message or error.__class__.__name__


def _expand_kubeconfig_path(kubeconfig_path: str | None) -> str | None:
    if kubeconfig_path is None:
        return None
    stripped = kubeconfig_path.strip()
    if not stripped:
        return None
    return str(Path(stripped).expanduser())


def _format_authentication_error(
    *,
    kubeconfig_path: str | None,
    context: str,
    error: Exception,
) -> str:
    reason = error_message(error)
    kubeconfig_source = kubeconfig_path or "default kubeconfig search path"
    context_message = f" with context '{context}'" if context else " with the current context"
    return (
        "Unable to connect to the cluster: loading kubeconfig "
        f"from '{kubeconfig_source}'{context_message} failed: {reason}. "
        "Verify the kubeconfig path and context are valid."
    )
