"""
Utility functions for the search sync Firebase Functions.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Iterable, List

# Prefer direct client import (provided by google-cloud-secret-manager)
from google.cloud.secretmanager import SecretManagerServiceClient

# Reuse a single client (Secret Manager clients are thread‑safe)
_secret_manager_client: SecretManagerServiceClient | None = None


def get_secret(secret_name, project_id):
    """Get a secret from Google Cloud Secret Manager."""
    global _secret_manager_client
    if _secret_manager_client is None:
        _secret_manager_client = SecretManagerServiceClient()
    secret_version_name = f"projects/{project_id}/secrets/{secret_name}/versions/latest"
    response = _secret_manager_client.access_secret_version(name=secret_version_name)
    return response.payload.data.decode("UTF-8")


def get_change_before_after(change) -> tuple[object | None, object | None]:
    """Return (before, after) snapshots from a Firestore Change.

    The firebase_functions Python SDK has used different attribute names across
    versions. This helper supports both the modern `before`/`after` and the
    older `old_value`/`value` naming.
    """
    if change is None:
        return (None, None)

    before = None
    after = None

    for attr in ("before", "old_value", "oldValue"):
        if hasattr(change, attr):
            before = getattr(change, attr)
            break

    for attr in ("after", "value", "new_value", "newValue"):
        if hasattr(change, attr):
            after = getattr(change, attr)
            break

    return (before, after)


def snapshot_to_dict(snapshot) -> Dict[str, Any] | None:
    """Convert a snapshot into a plain dict, or None when the document is absent."""
    if snapshot is None:
        return None
    if hasattr(snapshot, "exists") and not snapshot.exists:
        return None
    data = snapshot.to_dict() if hasattr(snapshot, "to_dict") else dict(snapshot)
    return data


def unique(values: Iterable[Any]) -> List[Any]:
    """De-duplicate while preserving first-seen order, dropping empty values."""
    return [v for v in dict.fromkeys(values) if v]


def run_concurrently(*tasks: Callable[[], Any]) -> List[Any]:
    """Run independent callables in parallel and wait for every one of them.

    Results come back in argument order. If any task failed, the first failure
    (in argument order) is re-raised after all tasks have finished.
    """
    tasks = [t for t in tasks if t is not None]
    if not tasks:
        return []
    if len(tasks) == 1:
        return [tasks[0]()]

    with ThreadPoolExecutor(max_workers=len(tasks)) as pool:
        futures = [pool.submit(t) for t in tasks]

    errors = [f.exception() for f in futures]
    for err in errors:
        if err is not None:
            if sum(1 for e in errors if e is not None) < len(errors):
                logging.warning(f"Concurrent write partially failed: {err}")
            raise err
    return [f.result() for f in futures]
