from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Union
import uuid

from kubernetes.utils import parse_quantity

from .errors import InvalidQuantity

CURRENT_VERSION = 1


class RelationshipKind(str, Enum):
    MIGRATION = "migration"
    BACKUP = "PVBackup"


@dataclass(frozen=True)
class Quantity:
    """A storage size such as ``10Gi``, validated with the Kubernetes quantity grammar."""

    text: str
    value: Decimal

    @classmethod
    def parse(cls, text: str) -> Quantity:
        stripped = text.strip()
        try:
            value = parse_quantity(stripped)
        except (ValueError, TypeError) as error:
            raise InvalidQuantity(text, str(error) or error.__class__.__name__) from error
        return cls(text=stripped, value=value)

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True)
class ResourceIdentifier:
    namespace: str
    name: str
    cluster: str = ""

    def __str__(self) -> str:
        if self.cluster:
            return f"{self.cluster}/{self.namespace}/{self.name}"
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class MigrationSource:
    volume: str
    size: Quantity | None = None


@dataclass(frozen=True)
class MigrationDestination:
    cluster: str
    namespace: str
    pvc_name: str
    destination_name: str
    copy_method: str
    service_type: str
    access_modes: tuple[str, ...] = ()
    capacity: Quantity | None = None
    storage_class_name: str | None = None
    ssh_key_secret_name: str | None = None
    address: str | None = None
    port: int | None = None
    ssh_keys: str | None = None


@dataclass(frozen=True)
class MigrationPayload:
    source: MigrationSource | None = None
    destination: MigrationDestination | None = None


@dataclass(frozen=True)
class BackupPayload:
    cluster: str
    namespace: str
    source_pvc_name: str
    backup_name: str
    source_name: str
    repository: str
    schedule: str = ""


Payload = Union[MigrationPayload, BackupPayload]


@dataclass(frozen=True)
class RelationshipRecord:
    name: str
    kind: RelationshipKind
    payload: Payload
    version: int = CURRENT_VERSION
    id: str = field(default_factory=lambda: str(uuid.uuid4()))


@dataclass(frozen=True)
class CredentialConfig:
    access_key_id: str
    secret_access_key: str
    repository: str
    password: str
    path: str

    def as_secret_data(self) -> dict[str, str]:
        return {
            "AWS_ACCESS_KEY_ID": self.access_key_id,
            "AWS_SECRET_ACCESS_KEY": self.secret_access_key,
            "RESTIC_REPOSITORY": self.repository,
            "RESTIC_PASSWORD": self.password,
        }


@dataclass(frozen=True)
class PVCProvisionResult:
    pvc: Any
    name: str
    access_modes: tuple[str, ...]
    capacity: Quantity | None
    storage_class_name: str | None


@dataclass(frozen=True)
class ExistingPVC(PVCProvisionResult):
    """The claim was already present; its spec is trusted as-is."""


@dataclass(frozen=True)
class CreatedPVC(PVCProvisionResult):
    """The claim was created by this run."""
