from __future__ import annotations

from typing import Any


class PVSyncError(RuntimeError):
    """Base class for failures surfaced to the command line."""


class MalformedIdentifier(PVSyncError):
    def __init__(self, identifier: str, reason: str) -> None:
        super().__init__(
            f"invalid resource identifier '{identifier}': {reason}. Expected [cluster/]namespace/name"
        )
        self.identifier = identifier


class UnsupportedOption(PVSyncError):
    def __init__(self, *, option: str, value: str, allowed: tuple[str, ...]) -> None:
        super().__init__(f"unsupported {option}: '{value}' (supported: {', '.join(allowed)})")
        self.option = option
        self.value = value


class InvalidQuantity(PVSyncError):
    def __init__(self, value: str, reason: str) -> None:
        super().__init__(f"capacity must be a valid quantity such as 10Gi, got '{value}': {reason}")
        self.value = value


class InvalidSchedule(PVSyncError):
    def __init__(self, expression: str, reason: str) -> None:
        super().__init__(f"invalid cronspec '{expression}': {reason}")
        self.expression = expression
        self.reason = reason


class MissingCapacity(PVSyncError):
    def __init__(self, *, namespace: str, name: str) -> None:
        super().__init__(
            f"PVC {namespace}/{name} does not exist and no capacity was given. "
            "Provide --capacity or the name of an existing PVC"
        )


class InvalidName(PVSyncError):
    def __init__(self, *, what: str, value: str) -> None:
        super().__init__(
            f"invalid {what} '{value}': must be a lowercase RFC 1123 name (a-z, 0-9, '-', '.')"
        )
        self.value = value


class CredentialFileError(PVSyncError):
    pass


class MissingCredentialField(PVSyncError):
    def __init__(self, *, field: str, path: str) -> None:
        super().__init__(f"credential file '{path}' is missing required field {field}")
        self.field = field
        self.path = path


class ClusterUnreachable(PVSyncError):
    pass


class ProvisioningError(PVSyncError):
    pass


class PVCInUseError(PVSyncError):
    def __init__(self, *, namespace: str, name: str, pods: list[str]) -> None:
        super().__init__(
            f"PVC {namespace}/{name} is currently in use by pods {', '.join(pods)}; "
            "stop the pods before restoring into it to avoid data corruption"
        )
        self.pods = pods


class AlreadyExists(PVSyncError):
    def __init__(self, *, kind: str, namespace: str, name: str, cluster: str = "") -> None:
        location = f"{cluster}/{namespace}" if cluster else namespace
        super().__init__(
            f"{kind} {location}/{name} already exists; relationships are created once per name"
        )
        self.kind = kind
        self.namespace = namespace
        self.name = name


class TransferError(PVSyncError):
    pass


class WaitTimeout(PVSyncError):
    def __init__(self, *, identifier: str, timeout: float, last_state: Any) -> None:
        super().__init__(
            f"timed out after {timeout:g}s waiting for {identifier} "
            f"(last observed state: {_summarize_state(last_state)})"
        )
        self.identifier = identifier
        self.timeout = timeout
        self.last_state = last_state


class StoreIOError(PVSyncError):
    pass


class IncompatibleRelationshipVersion(StoreIOError):
    def __init__(self, *, path: str, found: int, supported: int) -> None:
        super().__init__(
            f"relationship file '{path}' has version {found}, newer than supported version {supported}"
        )
        self.found = found
        self.supported = supported


def _summarize_state(state: Any, limit: int = 200) -> str:
    if isinstance(state, dict):
        state = {"status": state.get("status")}
    rendered = repr(state)
    if len(rendered) > limit:
        rendered = f"{rendered[:limit]}..."
    return rendered
