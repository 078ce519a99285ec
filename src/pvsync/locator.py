from __future__ import annotations

from .errors import MalformedIdentifier
from .models import ResourceIdentifier


def parse_identifier(identifier: str) -> ResourceIdentifier:
    """Split ``[cluster/]namespace/name`` into its parts.

    An empty cluster means the ambient kubeconfig context.
    """
    segments = identifier.split("/")
    if len(segments) == 2:
        cluster = ""
        namespace, name = segments
    elif len(segments) == 3:
        cluster, namespace, name = segments
    else:
        raise MalformedIdentifier(identifier, f"expected 2 or 3 segments, found {len(segments)}")

    if not namespace:
        raise MalformedIdentifier(identifier, "namespace is empty")
    if not name:
        raise MalformedIdentifier(identifier, "name is empty")
    return ResourceIdentifier(cluster=cluster, namespace=namespace, name=name)
