from __future__ import annotations

from dataclasses import dataclass
import re
import time
from typing import Any, Callable

from kubernetes.client import ApiException

from .credentials import load_credential_config, purge_credential_file
from .errors import AlreadyExists, InvalidName, MissingCapacity, TransferError, UnsupportedOption
from .k8s import ClusterClients, format_api_error, is_conflict
from .locator import parse_identifier
from .models import (
    BackupPayload,
    CreatedPVC,
    MigrationDestination,
    MigrationPayload,
    Quantity,
    RelationshipKind,
    RelationshipRecord,
)
from .observability import get_logger
from .provisioner import ResourceProvisioner
from .relationship import RelationshipStore
from .schedule import validate_schedule
from .waiter import rsync_destination_ready, status_present, wait_until

VOLSYNC_GROUP = "volsync.backube"
VOLSYNC_VERSION = "v1alpha1"
REPLICATION_DESTINATION_KIND = "ReplicationDestination"
REPLICATION_DESTINATION_PLURAL = "replicationdestinations"
REPLICATION_SOURCE_KIND = "ReplicationSource"
REPLICATION_SOURCE_PLURAL = "replicationsources"

COPY_METHODS = ("Direct", "Clone", "Snapshot", "None")
DEFAULT_COPY_METHOD = "Snapshot"
SERVICE_TYPES = ("ClusterIP", "NodePort", "LoadBalancer")
ACCESS_MODES = ("ReadWriteOnce", "ReadOnlyMany", "ReadWriteMany", "ReadWriteOncePod")
DEFAULT_ACCESS_MODE = "ReadWriteOnce"
BACKUP_COPY_METHOD = "Clone"
DEFAULT_RSYNC_PORT = 22
MAX_OBJECT_NAME_LENGTH = 253

_DNS_SUBDOMAIN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$")

log = get_logger("orchestrator")


@dataclass(frozen=True)
class MigrationCreateOptions:
    pvc_name: str
    service_type: str
    copy_method: str | None = None
    access_mode: str | None = None
    capacity: str | None = None
    storage_class_name: str | None = None


@dataclass(frozen=True)
class BackupCreateOptions:
    backup_name: str
    pvc_name: str
    credential_path: str
    cronspec: str = ""


@dataclass(frozen=True)
class OrchestratorConfig:
    poll_interval_seconds: float = 5.0
    destination_timeout_seconds: float = 120.0
    source_timeout_seconds: float = 120.0


class TransferOrchestrator:
    def __init__(
        self,
        *,
        client_factory: Callable[[str], ClusterClients],
        store: RelationshipStore,
        config: OrchestratorConfig,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client_factory = client_factory
        self.store = store
        self.config = config
        self.sleep = sleep
        self.clock = clock

    def create_migration(self, relationship: str, options: MigrationCreateOptions) -> RelationshipRecord:
        """Prepare a destination PVC and an rsync ReplicationDestination that accepts incoming data."""
        self.store.path_for(relationship, RelationshipKind.MIGRATION)
        target = parse_identifier(options.pvc_name)
        copy_method = _select_option("copymethod", options.copy_method, COPY_METHODS, default=DEFAULT_COPY_METHOD)
        service_type = _select_option("servicetype", options.service_type, SERVICE_TYPES)
        access_mode = _select_option("accessmodes", options.access_mode, ACCESS_MODES, default=DEFAULT_ACCESS_MODE)
        capacity = Quantity.parse(options.capacity) if options.capacity and options.capacity.strip() else None
        destination_name = migration_destination_name(target.namespace, target.name)
        bound_log = log.bind(relationship=relationship, cluster=target.cluster, namespace=target.namespace)

        clients = self.client_factory(target.cluster)
        provisioner = ResourceProvisioner(clients.core_api)
        # Nothing is written to the cluster until the claim can be satisfied.
        existing = provisioner.lookup_pvc(namespace=target.namespace, name=target.name)
        if existing is None and capacity is None:
            raise MissingCapacity(namespace=target.namespace, name=target.name)
        if existing is not None:
            provisioner.ensure_pvc_unmounted(namespace=target.namespace, pvc_name=target.name)

        provisioner.ensure_namespace(target.namespace)
        provisioned = provisioner.ensure_pvc(
            namespace=target.namespace,
            name=target.name,
            access_modes=(access_mode,),
            capacity=capacity,
            storage_class_name=options.storage_class_name,
        )
        if not isinstance(provisioned, CreatedPVC):
            bound_log.info("destination PVC already exists, keeping its spec", pvc=target.name)

        self._submit(
            clients,
            plural=REPLICATION_DESTINATION_PLURAL,
            kind=REPLICATION_DESTINATION_KIND,
            cluster=target.cluster,
            body=build_replication_destination(
                name=destination_name,
                namespace=target.namespace,
                pvc_name=target.name,
                copy_method=copy_method,
                service_type=service_type,
            ),
        )

        bound_log.info("waiting for destination address and ssh keys", destination=destination_name)
        ready = wait_until(
            _describe(REPLICATION_DESTINATION_KIND, target.cluster, target.namespace, destination_name),
            self._fetcher(
                clients,
                plural=REPLICATION_DESTINATION_PLURAL,
                kind=REPLICATION_DESTINATION_KIND,
                namespace=target.namespace,
                name=destination_name,
            ),
            rsync_destination_ready,
            poll_interval=self.config.poll_interval_seconds,
            timeout=self.config.destination_timeout_seconds,
            sleep=self.sleep,
            clock=self.clock,
        )
        rsync_status = ready["status"]["rsync"]
        port = rsync_status.get("port")

        record = RelationshipRecord(
            name=relationship,
            kind=RelationshipKind.MIGRATION,
            payload=MigrationPayload(
                destination=MigrationDestination(
                    cluster=target.cluster,
                    namespace=target.namespace,
                    pvc_name=target.name,
                    destination_name=destination_name,
                    copy_method=copy_method,
                    service_type=service_type,
                    access_modes=provisioned.access_modes,
                    capacity=provisioned.capacity,
                    storage_class_name=provisioned.storage_class_name,
                    ssh_key_secret_name=rsync_status["sshKeys"],
                    address=rsync_status["address"],
                    port=int(port) if port is not None else DEFAULT_RSYNC_PORT,
                    ssh_keys=rsync_status["sshKeys"],
                )
            ),
        )
        self.store.save(record)
        bound_log.info("migration destination ready", address=rsync_status["address"])
        return record

    def create_backup(self, relationship: str, options: BackupCreateOptions) -> RelationshipRecord:
        """Store restic credentials and schedule a ReplicationSource backing up the PVC."""
        self.store.path_for(relationship, RelationshipKind.BACKUP)
        source = parse_identifier(options.pvc_name)
        _validate_object_name("backup name", options.backup_name)
        credentials = load_credential_config(options.credential_path)
        schedule = validate_schedule(options.cronspec)
        source_name = backup_source_name(options.backup_name)
        bound_log = log.bind(relationship=relationship, cluster=source.cluster, namespace=source.namespace)

        clients = self.client_factory(source.cluster)
        provisioner = ResourceProvisioner(clients.core_api)
        provisioner.ensure_secret(
            namespace=source.namespace,
            name=options.backup_name,
            string_data=credentials.as_secret_data(),
        )

        self._submit(
            clients,
            plural=REPLICATION_SOURCE_PLURAL,
            kind=REPLICATION_SOURCE_KIND,
            cluster=source.cluster,
            body=build_replication_source(
                name=source_name,
                namespace=source.namespace,
                pvc_name=source.name,
                repository_secret=options.backup_name,
                schedule=schedule,
            ),
        )

        bound_log.info("waiting for replication source status", source=source_name)
        # Only the presence of status is checked here, unlike the destination
        # flow which waits for specific fields.
        wait_until(
            _describe(REPLICATION_SOURCE_KIND, source.cluster, source.namespace, source_name),
            self._fetcher(
                clients,
                plural=REPLICATION_SOURCE_PLURAL,
                kind=REPLICATION_SOURCE_KIND,
                namespace=source.namespace,
                name=source_name,
            ),
            status_present,
            poll_interval=self.config.poll_interval_seconds,
            timeout=self.config.source_timeout_seconds,
            sleep=self.sleep,
            clock=self.clock,
        )

        record = RelationshipRecord(
            name=relationship,
            kind=RelationshipKind.BACKUP,
            payload=BackupPayload(
                cluster=source.cluster,
                namespace=source.namespace,
                source_pvc_name=source.name,
                backup_name=options.backup_name,
                source_name=source_name,
                repository=credentials.repository,
                schedule=schedule,
            ),
        )
        self.store.save(record)
        purge_credential_file(credentials.path)
        bound_log.info("backup relationship created", source=source_name, schedule=schedule or "manual")
        return record

    def _submit(
        self,
        clients: ClusterClients,
        *,
        plural: str,
        kind: str,
        cluster: str,
        body: dict[str, Any],
    ) -> dict[str, Any]:
        metadata = body["metadata"]
        try:
            created = clients.custom_api.create_namespaced_custom_object(
                group=VOLSYNC_GROUP,
                version=VOLSYNC_VERSION,
                namespace=metadata["namespace"],
                plural=plural,
                body=body,
            )
        except ApiException as error:
            if is_conflict(error):
                raise AlreadyExists(
                    kind=kind,
                    namespace=metadata["namespace"],
                    name=metadata["name"],
                    cluster=cluster,
                ) from error
            raise TransferError(
                format_api_error(
                    operation=f"create {_describe(kind, cluster, metadata['namespace'], metadata['name'])}",
                    error=error,
                    hint="Verify the VolSync CRDs are installed and RBAC allows create on them.",
                )
            ) from error

        log.info("created transfer object", kind=kind, namespace=metadata["namespace"], name=metadata["name"])
        return created

    def _fetcher(
        self,
        clients: ClusterClients,
        *,
        plural: str,
        kind: str,
        namespace: str,
        name: str,
    ) -> Callable[[], dict[str, Any]]:
        def fetch() -> dict[str, Any]:
            try:
                return clients.custom_api.get_namespaced_custom_object(
                    group=VOLSYNC_GROUP,
                    version=VOLSYNC_VERSION,
                    namespace=namespace,
                    plural=plural,
                    name=name,
                )
            except ApiException as error:
                raise TransferError(
                    format_api_error(
                        operation=f"read {_describe(kind, clients.context, namespace, name)}",
                        error=error,
                    )
                ) from error

        return fetch


def build_replication_destination(
    *,
    name: str,
    namespace: str,
    pvc_name: str,
    copy_method: str,
    service_type: str,
) -> dict[str, Any]:
    return {
        "apiVersion": f"{VOLSYNC_GROUP}/{VOLSYNC_VERSION}",
        "kind": REPLICATION_DESTINATION_KIND,
        "metadata": {"name": name, "namespace": namespace},
        "spec": {
            "rsync": {
                "destinationPVC": pvc_name,
                "copyMethod": copy_method,
                "serviceType": service_type,
            }
        },
    }


def build_replication_source(
    *,
    name: str,
    namespace: str,
    pvc_name: str,
    repository_secret: str,
    schedule: str,
) -> dict[str, Any]:
    spec: dict[str, Any] = {
        "sourcePVC": pvc_name,
        "restic": {
            # VolSync resolves the repository URI and credentials from this
            # Secret's RESTIC_REPOSITORY and related keys.
            "repository": repository_secret,
            "copyMethod": BACKUP_COPY_METHOD,
        },
    }
    if schedule:
        spec["trigger"] = {"schedule": schedule}
    return {
        "apiVersion": f"{VOLSYNC_GROUP}/{VOLSYNC_VERSION}",
        "kind": REPLICATION_SOURCE_KIND,
        "metadata": {"name": name, "namespace": namespace},
        "spec": spec,
    }


def migration_destination_name(namespace: str, pvc_name: str) -> str:
    return _sanitize_dns_name(f"{namespace}-{pvc_name}-migration-dest")


def backup_source_name(backup_name: str) -> str:
    return _sanitize_dns_name(f"{backup_name}-backup-source")


def _select_option(option: str, value: str | None, allowed: tuple[str, ...], *, default: str | None = None) -> str:
    selected = (value or "").strip() or default
    if selected not in allowed:
        raise UnsupportedOption(option=option, value=selected or "", allowed=allowed)
    return selected


def _validate_object_name(what: str, value: str) -> None:
    if not value or len(value) > MAX_OBJECT_NAME_LENGTH or not _DNS_SUBDOMAIN.match(value):
        raise InvalidName(what=what, value=value)


def _sanitize_dns_name(value: str, max_length: int = MAX_OBJECT_NAME_LENGTH) -> str:
    lowered = value.lower()
    normalized = re.sub(r"[^a-z0-9.-]", "-", lowered).strip("-.")
    normalized = re.sub(r"-+", "-", normalized)
    if len(normalized) > max_length:
        normalized = normalized[:max_length].rstrip("-.")
    return normalized


def _describe(kind: str, cluster: str, namespace: str, name: str) -> str:
    location = f"{cluster}/{namespace}" if cluster else namespace
    return f"{kind} '{location}/{name}'"
