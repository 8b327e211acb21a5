"""Algolia index writer for the synced collections.

Every synced collection has one index of the same name; the record objectID is
always the Firestore document id. Records are normalized here so that Firestore
value types (timestamps, references, geo points, write sentinels) serialize to
plain JSON before they reach Algolia.
"""

from __future__ import annotations

import datetime
import logging
from typing import Any, Dict, Iterable, List

from google.cloud.firestore_v1.transforms import Sentinel


def _to_index_value(value: Any) -> Any:
    if isinstance(value, datetime.datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=datetime.timezone.utc)
        return int(value.timestamp())
    if isinstance(value, datetime.date):
        return value.isoformat()
    if isinstance(value, dict):
        return {
            k: _to_index_value(v) for k, v in value.items() if not isinstance(v, Sentinel)
        }
    if isinstance(value, (list, tuple)):
        return [_to_index_value(v) for v in value if not isinstance(v, Sentinel)]
    if hasattr(value, "latitude") and hasattr(value, "longitude"):
        return {"lat": value.latitude, "lng": value.longitude}
    if hasattr(value, "path") and hasattr(value, "parent"):
        # DocumentReference
        return value.path
    return value


def to_index_record(object_id: str, record: Dict[str, Any]) -> Dict[str, Any]:
    """Build the Algolia payload for a transformed document."""
    payload = _to_index_value(dict(record))
    payload["objectID"] = object_id
    return payload


def save_record(index, object_id: str, record: Dict[str, Any]):
    """Upsert one record keyed by document id."""
    return index.save_object(to_index_record(object_id, record))


def save_records(index, records: Iterable[tuple[str, Dict[str, Any]]]) -> int:
    """Bulk upsert (object_id, record) pairs. Returns the number saved."""
    payloads = [to_index_record(object_id, record) for object_id, record in records]
    if payloads:
        index.save_objects(payloads)
    return len(payloads)


def delete_record(index, object_id: str):
    return index.delete_object(object_id)


def sweep_stale_records(index, live_ids: Iterable[str]) -> List[str]:
    """Delete index records whose document no longer exists.

    Returns the objectIDs that were removed.
    """
    live = set(live_ids)
    stale = [
        hit["objectID"]
        for hit in index.browse_objects({"attributesToRetrieve": ["objectID"]})
        if hit.get("objectID") not in live
    ]
    if stale:
        index.delete_objects(stale)
        logging.info(f"Removed {len(stale)} stale record(s) from index")
    return stale
