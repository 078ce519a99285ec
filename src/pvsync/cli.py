from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Callable, cast

import click

from .config import AppConfig, ensure_directories
from .errors import PVSyncError
from .k8s import ClusterClientFactory
from .models import BackupPayload, MigrationDestination, MigrationPayload, RelationshipKind
from .observability import get_logger, setup_logging
from .orchestrator import (
    ACCESS_MODES,
    COPY_METHODS,
    SERVICE_TYPES,
    BackupCreateOptions,
    MigrationCreateOptions,
    OrchestratorConfig,
    TransferOrchestrator,
)
from .relationship import RelationshipStore, render_record

log = get_logger("cli")


@dataclass(frozen=True)
class RelationshipContext:
    config: AppConfig
    relationship: str
    kind: RelationshipKind


@dataclass(frozen=True)
class GroupSpec:
    name: str
    kind: RelationshipKind
    help: str


@dataclass(frozen=True)
class CommandSpec:
    group: str
    name: str
    help: str
    params: tuple[click.Parameter, ...]
    handler: Callable[[RelationshipContext, dict[str, Any]], None]


def _build_orchestrator(config: AppConfig) -> TransferOrchestrator:
    ensure_directories(config)
    return TransferOrchestrator(
        client_factory=ClusterClientFactory(config.kubeconfig_path),
        store=RelationshipStore(config.config_dir),
        config=OrchestratorConfig(
            poll_interval_seconds=config.poll_interval_seconds,
            destination_timeout_seconds=config.destination_timeout_seconds,
            source_timeout_seconds=config.source_timeout_seconds,
        ),
    )


def migration_create(context: RelationshipContext, params: dict[str, Any]) -> None:
    options = MigrationCreateOptions(
        pvc_name=params["pvcname"],
        service_type=params["servicetype"],
        copy_method=params.get("copymethod"),
        access_mode=params.get("accessmodes"),
        capacity=params.get("capacity"),
        storage_class_name=params.get("storageclass"),
    )
    record = _build_orchestrator(context.config).create_migration(context.relationship, options)
    destination = cast(MigrationDestination, cast(MigrationPayload, record.payload).destination)
    click.echo(f"Migration destination {destination.namespace}/{destination.destination_name} is ready")
    click.echo(f"  address:  {destination.address}")
    click.echo(f"  port:     {destination.port}")
    click.echo(f"  ssh keys: {destination.ssh_keys}")


def backup_create(context: RelationshipContext, params: dict[str, Any]) -> None:
    options = BackupCreateOptions(
        backup_name=params["name"],
        pvc_name=params["pvcname"],
        credential_path=params["restic_config"],
        cronspec=params.get("cronspec") or "",
    )
    record = _build_orchestrator(context.config).create_backup(context.relationship, options)
    payload = cast(BackupPayload, record.payload)
    click.echo(
        f"Backup {payload.backup_name} of {payload.namespace}/{payload.source_pvc_name} "
        f"created ({payload.schedule or 'manual trigger'})"
    )


def show_relationship(context: RelationshipContext, params: dict[str, Any]) -> None:
    store = RelationshipStore(context.config.config_dir)
    record = store.load(context.relationship, context.kind)
    click.echo(render_record(record), nl=False)


GROUPS: tuple[GroupSpec, ...] = (
    GroupSpec(
        name="migration",
        kind=RelationshipKind.MIGRATION,
        help="Migrate data into a PersistentVolume.",
    ),
    GroupSpec(
        name="pv-backup",
        kind=RelationshipKind.BACKUP,
        help="Back up/restore data into/from a restic repository.",
    ),
)

COMMANDS: tuple[CommandSpec, ...] = (
    CommandSpec(
        group="migration",
        name="create",
        help=(
            "Create a new migration destination. The named PVC is created if it does not "
            "already exist, and a ReplicationDestination is set up to accept rsync over ssh."
        ),
        params=(
            click.Option(
                ["--pvcname"],
                required=True,
                help="name of the PVC to create or use: [context/]namespace/name",
            ),
            click.Option(
                ["--servicetype"],
                required=True,
                help=f"Service type used to reach the destination. viz: {', '.join(SERVICE_TYPES)}",
            ),
            click.Option(["--copymethod"], help=f"copy method, default Snapshot. viz: {', '.join(COPY_METHODS)}"),
            click.Option(
                ["--accessmodes"],
                help=f"accessMode of the PVC to create, default ReadWriteOnce. viz: {', '.join(ACCESS_MODES)}",
            ),
            click.Option(["--capacity"], help="size of the PVC to create ex: 10Gi"),
            click.Option(["--storageclass"], help="StorageClass name for the PVC"),
        ),
        handler=migration_create,
    ),
    CommandSpec(
        group="migration",
        name="show",
        help="Print the stored migration relationship.",
        params=(),
        handler=show_relationship,
    ),
    CommandSpec(
        group="pv-backup",
        name="create",
        help=(
            "Create a new pv-backup relationship: stores the restic configuration in the "
            "namespace, creates the ReplicationSource and saves the relationship file."
        ),
        params=(
            click.Option(["--name"], required=True, help="name of the backup used to address backup & restore"),
            click.Option(
                ["--restic-config", "restic_config"],
                required=True,
                type=click.Path(dir_okay=False),
                help="path of the restic config file",
            ),
            click.Option(["--pvcname"], required=True, help="name of the PVC to back up: [context/]namespace/name"),
            click.Option(["--cronspec"], default="", help="cronspec describing the backup schedule"),
        ),
        handler=backup_create,
    ),
    CommandSpec(
        group="pv-backup",
        name="show",
        help="Print the stored pv-backup relationship.",
        params=(),
        handler=show_relationship,
    ),
)


def build_cli(
    groups: tuple[GroupSpec, ...] = GROUPS,
    commands: tuple[CommandSpec, ...] = COMMANDS,
) -> click.Group:
    root = click.Group(
        name="pvsync",
        help="Drive VolSync data movement between PersistentVolumes and clusters.",
        callback=_configure,
        params=[
            click.Option(["--kubeconfig"], default=None, help="path to the kubeconfig file"),
            click.Option(
                ["--config-dir", "config_dir"],
                default=None,
                type=click.Path(file_okay=False, path_type=Path),
                help="directory holding relationship files",
            ),
            click.Option(["--log-level", "log_level"], default=None, help="debug, info, warning or error"),
            click.Option(
                ["--log-format", "log_format"],
                default=None,
                type=click.Choice(["console", "json"]),
                help="log renderer",
            ),
        ],
    )

    subgroups: dict[str, click.Group] = {}
    for group in groups:
        subgroups[group.name] = click.Group(
            name=group.name,
            help=group.help,
            callback=_relationship_callback(group.kind),
            params=[click.Option(["-r", "--relationship"], required=True, help="relationship name")],
        )
        root.add_command(subgroups[group.name])

    for command in commands:
        subgroups[command.group].add_command(
            click.Command(
                name=command.name,
                help=command.help,
                params=list(command.params),
                callback=_command_callback(command.handler),
            )
        )
    return root


def _configure(
    kubeconfig: str | None,
    config_dir: Path | None,
    log_level: str | None,
    log_format: str | None,
) -> None:
    ctx = click.get_current_context()
    config = AppConfig()
    overrides: dict[str, Any] = {}
    if kubeconfig:
        overrides["kubeconfig_path"] = kubeconfig
    if config_dir is not None:
        overrides["config_dir"] = config_dir.expanduser()
    if log_level:
        overrides["log_level"] = log_level
    if log_format:
        overrides["log_format"] = log_format
    config = replace(config, **overrides)
    setup_logging(config.log_level, config.log_format)
    ctx.obj = config


def _relationship_callback(kind: RelationshipKind) -> Callable[..., None]:
    def callback(relationship: str) -> None:
        ctx = click.get_current_context()
        ctx.obj = RelationshipContext(config=ctx.obj, relationship=relationship, kind=kind)

    return callback


def _command_callback(handler: Callable[[RelationshipContext, dict[str, Any]], None]) -> Callable[..., None]:
    def callback(**params: Any) -> None:
        ctx = click.get_current_context()
        context: RelationshipContext = ctx.obj
        try:
            handler(context, params)
        except PVSyncError as error:
            log.error(
                "command failed",
                command=ctx.command_path,
                relationship=context.relationship,
                error=str(error),
            )
            raise click.ClickException(str(error)) from error

    return callback


def main() -> None:
    build_cli()(prog_name="pvsync")
