from __future__ import annotations

from pathlib import Path
from typing import Any

from dotenv import dotenv_values
import yaml

from .errors import CredentialFileError, MissingCredentialField
from .models import CredentialConfig
from .observability import get_logger

ACCESS_KEY_ID = "AWS_ACCESS_KEY_ID"
SECRET_ACCESS_KEY = "AWS_SECRET_ACCESS_KEY"
REPOSITORY = "RESTIC_REPOSITORY"
PASSWORD = "RESTIC_PASSWORD"
REQUIRED_FIELDS = (ACCESS_KEY_ID, SECRET_ACCESS_KEY, REPOSITORY, PASSWORD)
_STRUCTURED_SUFFIXES = {".yaml", ".yml", ".json"}

log = get_logger("credentials")


def load_credential_config(path: str | Path) -> CredentialConfig:
    """Read restic repository credentials from a YAML/JSON or dotenv file.

    All four of ``REQUIRED_FIELDS`` must be present and non-empty.
    """
    credential_path = Path(path).expanduser()
    if not credential_path.is_file():
        raise CredentialFileError(f"credential file '{credential_path}' not found")

    values = _read_values(credential_path)
    resolved: dict[str, str] = {}
    for field in REQUIRED_FIELDS:
        value = values.get(field)
        if value is None or not str(value).strip():
            raise MissingCredentialField(field=field, path=str(credential_path))
        resolved[field] = str(value).strip()

    return CredentialConfig(
        access_key_id=resolved[ACCESS_KEY_ID],
        secret_access_key=resolved[SECRET_ACCESS_KEY],
        repository=resolved[REPOSITORY],
        password=resolved[PASSWORD],
        path=str(credential_path),
    )


def purge_credential_file(path: str | Path) -> bool:
    credential_path = Path(path)
    try:
        credential_path.unlink(missing_ok=True)
    except OSError as error:
        log.warning("unable to remove credential file", path=str(credential_path), error=str(error))
        return False
    log.info("removed credential file", path=str(credential_path))
    return True


def _read_values(path: Path) -> dict[str, Any]:
    if path.suffix.lower() in _STRUCTURED_SUFFIXES:
        try:
            with path.open("r", encoding="utf-8") as handle:
                document = yaml.safe_load(handle)
        except (OSError, yaml.YAMLError) as error:
            raise CredentialFileError(f"unable to read credential file '{path}': {error}") from error
        if document is None:
            return {}
        if not isinstance(document, dict):
            raise CredentialFileError(f"credential file '{path}' must contain a mapping of keys to values")
        return document

    try:
        return dict(dotenv_values(path))
    except (OSError, UnicodeDecodeError) as error:
        raise CredentialFileError(f"unable to read credential file '{path}': {error}") from error
