from __future__ import annotations

from pathlib import Path
import os
import tempfile
from typing import Any

import yaml

from .errors import IncompatibleRelationshipVersion, InvalidQuantity, StoreIOError
from .models import (
    CURRENT_VERSION,
    BackupPayload,
    MigrationDestination,
    MigrationPayload,
    MigrationSource,
    Quantity,
    RelationshipKind,
    RelationshipRecord,
)
from .observability import get_logger

log = get_logger("relationship")


class RelationshipStore:
    """Relationship records kept as YAML documents, one file per name and kind."""

    def __init__(self, config_dir: Path) -> None:
        self.config_dir = config_dir

    def path_for(self, name: str, kind: RelationshipKind) -> Path:
        if not name or name in {".", ".."} or "/" in name or os.sep in name:
            raise StoreIOError(f"invalid relationship name '{name}'")
        return self.config_dir / kind.value / f"{name}.yaml"

    def exists(self, name: str, kind: RelationshipKind) -> bool:
        return self.path_for(name, kind).is_file()

    def save(self, record: RelationshipRecord) -> Path:
        path = self.path_for(record.name, record.kind)
        temporary_path: Path | None = None
        try:
            content = yaml.safe_dump(_record_to_document(record), sort_keys=False, default_flow_style=False)
            path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                mode="w",
                dir=path.parent,
                prefix=f".{record.name}.",
                suffix=".tmp",
                delete=False,
            ) as handle:
                temporary_path = Path(handle.name)
                handle.write(content)
            os.chmod(temporary_path, 0o600)
            os.replace(temporary_path, path)
        except (OSError, yaml.YAMLError) as error:
            if temporary_path is not None:
                temporary_path.unlink(missing_ok=True)
            raise StoreIOError(f"unable to save relationship configuration to '{path}': {error}") from error

        log.info("relationship saved", relationship=record.name, type=record.kind.value, path=str(path))
        return path

    def load(self, name: str, kind: RelationshipKind) -> RelationshipRecord:
        path = self.path_for(name, kind)
        try:
            with path.open("r", encoding="utf-8") as handle:
                document = yaml.safe_load(handle)
        except FileNotFoundError as error:
            raise StoreIOError(f"relationship '{name}' of type {kind.value} not found at '{path}'") from error
        except (OSError, yaml.YAMLError) as error:
            raise StoreIOError(f"unable to read relationship configuration '{path}': {error}") from error

        if not isinstance(document, dict):
            raise StoreIOError(f"relationship configuration '{path}' is not a mapping")
        if document.get("type") != kind.value:
            raise StoreIOError(
                f"relationship configuration '{path}' has type {document.get('type')!r}, expected {kind.value!r}"
            )

        data = document.get("data") or {}
        version = data.get("version")
        if not isinstance(version, int):
            raise StoreIOError(f"relationship configuration '{path}' has no data.version")
        if version > CURRENT_VERSION:
            raise IncompatibleRelationshipVersion(path=str(path), found=version, supported=CURRENT_VERSION)

        try:
            if kind is RelationshipKind.MIGRATION:
                payload: MigrationPayload | BackupPayload = _migration_payload_from_data(data)
            else:
                payload = _backup_payload_from_data(data)
        except (KeyError, TypeError, ValueError, InvalidQuantity) as error:
            raise StoreIOError(f"relationship configuration '{path}' is malformed: {error}") from error

        return RelationshipRecord(
            name=name,
            kind=kind,
            payload=payload,
            version=version,
            id=str(document.get("id") or ""),
        )

    def delete(self, name: str, kind: RelationshipKind) -> None:
        path = self.path_for(name, kind)
        try:
            path.unlink(missing_ok=True)
        except OSError as error:
            raise StoreIOError(f"unable to delete relationship configuration '{path}': {error}") from error


def render_record(record: RelationshipRecord) -> str:
    return yaml.safe_dump(_record_to_document(record), sort_keys=False, default_flow_style=False)


def _record_to_document(record: RelationshipRecord) -> dict[str, Any]:
    data: dict[str, Any] = {"version": record.version}
    payload = record.payload
    if isinstance(payload, MigrationPayload):
        if payload.source is not None:
            data["source"] = {
                "volume": payload.source.volume,
                "size": _render_quantity(payload.source.size),
            }
        if payload.destination is not None:
            data["destination"] = _migration_destination_to_data(payload.destination)
    else:
        data["source"] = {
            "cluster": payload.cluster,
            "namespace": payload.namespace,
            "pvcName": payload.source_pvc_name,
            "backupName": payload.backup_name,
            "sourceName": payload.source_name,
            "repository": payload.repository,
            "schedule": payload.schedule,
        }
    return {"id": record.id, "type": record.kind.value, "data": data}


def _migration_destination_to_data(destination: MigrationDestination) -> dict[str, Any]:
    return {
        "cluster": destination.cluster,
        "namespace": destination.namespace,
        "pvcName": destination.pvc_name,
        "destinationName": destination.destination_name,
        "sshKeySecretName": destination.ssh_key_secret_name,
        "spec": {
            "copyMethod": destination.copy_method,
            "accessModes": list(destination.access_modes),
            # yaml cannot represent Quantity, so it is written in its string form
            "capacity": _render_quantity(destination.capacity),
            "storageClassName": destination.storage_class_name,
            "serviceType": destination.service_type,
        },
        "rsync": {
            "address": destination.address,
            "port": destination.port,
            "sshKeys": destination.ssh_keys,
        },
    }


def _migration_payload_from_data(data: dict[str, Any]) -> MigrationPayload:
    source = None
    raw_source = data.get("source")
    if raw_source:
        source = MigrationSource(volume=str(raw_source["volume"]), size=_parse_quantity(raw_source.get("size")))

    destination = None
    raw_destination = data.get("destination")
    if raw_destination:
        spec = raw_destination.get("spec") or {}
        rsync = raw_destination.get("rsync") or {}
        port = rsync.get("port")
        destination = MigrationDestination(
            cluster=str(raw_destination.get("cluster") or ""),
            namespace=str(raw_destination["namespace"]),
            pvc_name=str(raw_destination["pvcName"]),
            destination_name=str(raw_destination["destinationName"]),
            ssh_key_secret_name=raw_destination.get("sshKeySecretName"),
            copy_method=str(spec["copyMethod"]),
            access_modes=tuple(spec.get("accessModes") or ()),
            capacity=_parse_quantity(spec.get("capacity")),
            storage_class_name=spec.get("storageClassName"),
            service_type=str(spec["serviceType"]),
            address=rsync.get("address"),
            port=int(port) if port is not None else None,
            ssh_keys=rsync.get("sshKeys"),
        )
    return MigrationPayload(source=source, destination=destination)


def _backup_payload_from_data(data: dict[str, Any]) -> BackupPayload:
    source = data["source"]
    return BackupPayload(
        cluster=str(source.get("cluster") or ""),
        namespace=str(source["namespace"]),
        source_pvc_name=str(source["pvcName"]),
        backup_name=str(source["backupName"]),
        source_name=str(source["sourceName"]),
        repository=str(source["repository"]),
        schedule=str(source.get("schedule") or ""),
    )


def _render_quantity(quantity: Quantity | None) -> str | None:
    return str(quantity) if quantity is not None else None


def _parse_quantity(value: Any) -> Quantity | None:
    if value is None or value == "":
        return None
    return Quantity.parse(str(value))
