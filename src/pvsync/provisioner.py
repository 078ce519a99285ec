from __future__ import annotations

from typing import Any

from kubernetes import client
from kubernetes.client import ApiException

from .errors import MissingCapacity, PVCInUseError, ProvisioningError
from .k8s import format_api_error, is_conflict, is_not_found
from .models import CreatedPVC, ExistingPVC, Quantity
from .observability import get_logger

log = get_logger("provisioner")


class ResourceProvisioner:
    """Idempotent creation of the objects a relationship depends on."""

    def __init__(self, core_api: client.CoreV1Api) -> None:
        self.core_api = core_api

    def ensure_namespace(self, name: str) -> None:
        namespace = client.V1Namespace(metadata=client.V1ObjectMeta(name=name))
        try:
            self.core_api.create_namespace(body=namespace)
        except ApiException as error:
            if is_conflict(error):
                log.info("namespace already present, proceeding with it", namespace=name)
                return
            raise ProvisioningError(
                format_api_error(
                    operation=f"create namespace '{name}'",
                    error=error,
                    hint="Verify RBAC allows create on namespaces.",
                )
            ) from error
        log.info("created namespace", namespace=name)

    def ensure_pvc(
        self,
        *,
        namespace: str,
        name: str,
        access_modes: tuple[str, ...],
        capacity: Quantity | None,
        storage_class_name: str | None = None,
    ) -> ExistingPVC | CreatedPVC:
        existing = self.lookup_pvc(namespace=namespace, name=name)
        if existing is not None:
            log.info("using existing PVC", namespace=namespace, pvc=name)
            return _existing_result(existing, name)

        if capacity is None:
            raise MissingCapacity(namespace=namespace, name=name)

        pvc = client.V1PersistentVolumeClaim(
            metadata=client.V1ObjectMeta(name=name, namespace=namespace),
            spec=client.V1PersistentVolumeClaimSpec(
                access_modes=list(access_modes),
                resources=client.V1VolumeResourceRequirements(requests={"storage": str(capacity)}),
                storage_class_name=storage_class_name or None,
            ),
        )
        try:
            created = self.core_api.create_namespaced_persistent_volume_claim(namespace=namespace, body=pvc)
        except ApiException as error:
            if is_conflict(error):
                existing = self.lookup_pvc(namespace=namespace, name=name)
                if existing is not None:
                    log.info("PVC appeared concurrently, using it", namespace=namespace, pvc=name)
                    return _existing_result(existing, name)
            raise ProvisioningError(
                format_api_error(
                    operation=f"create PVC '{namespace}/{name}'",
                    error=error,
                    hint="Check the requested capacity, access mode and storage class.",
                )
            ) from error

        log.info("created PVC", namespace=namespace, pvc=name, capacity=str(capacity))
        return CreatedPVC(
            pvc=created if created is not None else pvc,
            name=name,
            access_modes=tuple(access_modes),
            capacity=capacity,
            storage_class_name=storage_class_name or None,
        )

    def ensure_secret(self, *, namespace: str, name: str, string_data: dict[str, str]) -> None:
        secret = client.V1Secret(
            metadata=client.V1ObjectMeta(name=name, namespace=namespace),
            string_data=dict(string_data),
        )
        try:
            self.core_api.create_namespaced_secret(namespace=namespace, body=secret)
        except ApiException as error:
            if is_conflict(error):
                log.info("secret already present, proceeding with it", namespace=namespace, secret=name)
                return
            raise ProvisioningError(
                format_api_error(
                    operation=f"create secret '{namespace}/{name}'",
                    error=error,
                    hint="Verify RBAC allows create on secrets in this namespace.",
                )
            ) from error
        log.info("created secret", namespace=namespace, secret=name)

    def delete_secret(self, *, namespace: str, name: str) -> None:
        try:
            self.core_api.delete_namespaced_secret(name=name, namespace=namespace)
        except ApiException as error:
            if is_not_found(error):
                log.info("secret not found, ignoring", namespace=namespace, secret=name)
                return
            raise ProvisioningError(
                format_api_error(operation=f"delete secret '{namespace}/{name}'", error=error)
            ) from error
        log.info("deleted secret", namespace=namespace, secret=name)

    def ensure_pvc_unmounted(self, *, namespace: str, pvc_name: str) -> None:
        try:
            response = self.core_api.list_namespaced_pod(namespace=namespace)
        except ApiException as error:
            raise ProvisioningError(
                format_api_error(
                    operation=f"list pods using PVC '{namespace}/{pvc_name}'",
                    error=error,
                    hint="Verify RBAC allows list on pods.",
                )
            ) from error

        pods: list[str] = []
        for pod in getattr(response, "items", None) or []:
            pod_spec = getattr(pod, "spec", None)
            if pod_spec is None:
                continue
            for declared_volume in getattr(pod_spec, "volumes", None) or []:
                pvc_reference = getattr(declared_volume, "persistent_volume_claim", None)
                if pvc_reference and getattr(pvc_reference, "claim_name", None) == pvc_name:
                    pods.append(pod.metadata.name)
                    break
        if pods:
            raise PVCInUseError(namespace=namespace, name=pvc_name, pods=sorted(pods))

    def lookup_pvc(self, *, namespace: str, name: str) -> Any | None:
        """Return the claim, or None when it does not exist."""
        try:
            return self.core_api.read_namespaced_persistent_volume_claim(name=name, namespace=namespace)
        except ApiException as error:
            if is_not_found(error):
                return None
            raise ProvisioningError(
                format_api_error(
                    operation=f"look up PVC '{namespace}/{name}'",
                    error=error,
                    hint="Verify RBAC allows get on persistentvolumeclaims.",
                )
            ) from error


def _existing_result(pvc: Any, name: str) -> ExistingPVC:
    spec = getattr(pvc, "spec", None)
    status = getattr(pvc, "status", None)

    raw_capacity = None
    if status is not None and getattr(status, "capacity", None):
        raw_capacity = status.capacity.get("storage")
    resources = getattr(spec, "resources", None)
    if raw_capacity is None and resources is not None and resources.requests:
        raw_capacity = resources.requests.get("storage")

    return ExistingPVC(
        pvc=pvc,
        name=name,
        access_modes=tuple(spec.access_modes or ()) if spec is not None else (),
        capacity=Quantity.parse(str(raw_capacity)) if raw_capacity else None,
        storage_class_name=spec.storage_class_name if spec is not None else None,
    )
