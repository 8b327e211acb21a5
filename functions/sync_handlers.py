"""
Write-trigger handlers that keep the Algolia indices in step with Firestore.

One handler per watched collection. Each receives the process-scoped clients,
the document id and the before/after bodies (None when absent):

* after is None: the index record is deleted.
* otherwise the transformer runs, derived fields that drifted from the stored
  document are written back, dependents are updated when a field they
  denormalize changed, and the index record is always upserted.

Self-corrections and ripple writes share one batch, committed concurrently with
the index upsert. A correction is a committed change on the next invocation, so
ripples keyed on committed before/after differences fire exactly once and the
pass after that writes nothing.
"""

import logging
from typing import Any, Callable, Dict, Iterable

from firebase_admin import firestore

from config import (
    CAMPAIGNS,
    CONVERSION_METHODS,
    CONVERSION_SCREENS,
    CUSTOM_MICROGAMES,
    DELIVERY_CONTAINERS,
    MACROGAMES,
    MICROGAMES,
)
from indexer import delete_record, save_record
from transformers import (
    STATUS_OK,
    archived_microgame_status,
    get_doc,
    load_all,
    macrogame_status,
    transform,
)
from utils import run_concurrently

# Derived fields each collection persists back onto its own document.
SELF_CORRECTING_FIELDS = {
    MICROGAMES: (),
    CUSTOM_MICROGAMES: ("baseMicrogameName", "status"),
    CONVERSION_METHODS: (),
    CONVERSION_SCREENS: ("status", "methodIdList", "methodTypes"),
    MACROGAMES: ("status", "flowMicrogameIds", "variantIdList"),
    DELIVERY_CONTAINERS: ("status", "isCampaignLinked", "macrogameName"),
    CAMPAIGNS: ("containerIdList", "deliveryMethods"),
}


class DocumentWrites:
    """Pending updates merged per document so each ends up once in a batch."""

    def __init__(self, db):
        self.db = db
        self._updates: Dict[str, tuple] = {}

    def update(self, ref, fields: Dict[str, Any]) -> None:
        _, pending = self._updates.setdefault(ref.path, (ref, {}))
        pending.update(fields)

    def touch(self, ref) -> None:
        """Bump updatedAt so the document's own write trigger re-runs."""
        self.update(ref, {"updatedAt": firestore.SERVER_TIMESTAMP})

    def __len__(self) -> int:
        return len(self._updates)

    def committer(self) -> Callable[[], Any] | None:
        """A callable committing every pending update atomically, or None."""
        if not self._updates:
            return None
        batch = self.db.batch()
        for ref, fields in self._updates.values():
            batch.update(ref, fields)
        return batch.commit


def changed(before: Dict[str, Any] | None, after: Dict[str, Any], *fields: str) -> bool:
    """True when the document is new or any of `fields` differs."""
    if before is None:
        return True
    return any(before.get(f) != after.get(f) for f in fields)


def updated(before: Dict[str, Any] | None, after: Dict[str, Any], *fields: str) -> bool:
    """Like `changed`, but only for updates of an existing document."""
    return before is not None and changed(before, after, *fields)


def self_corrections(stored: Dict[str, Any], record: Dict[str, Any], fields: Iterable[str]) -> Dict[str, Any]:
    return {f: record.get(f) for f in fields if stored.get(f) != record.get(f)}


def _query(db, collection: str, field: str, op: str, value):
    return db.collection(collection).where(field, op, value).stream()


def _sync_document(clients, collection: str, doc_id: str, after, ripple=None):
    """Shared body of every write trigger. Returns the index record or None."""
    db = clients.db
    index = clients.index(collection)

    if after is None:
        delete_record(index, doc_id)
        logging.info(f"Deleted {collection} index record for {doc_id}")
        return None

    record = transform(db, collection, after)
    writes = DocumentWrites(db)

    corrections = self_corrections(after, record, SELF_CORRECTING_FIELDS[collection])
    if corrections:
        logging.info(f"Correcting {sorted(corrections)} on {collection}/{doc_id}")
        writes.update(db.collection(collection).document(doc_id), corrections)

    if ripple is not None:
        ripple(writes, record)

    run_concurrently(
        lambda: save_record(index, doc_id, record),
        writes.committer(),
    )
    logging.info(f"Indexed {collection}/{doc_id} ({len(writes)} document write(s))")
    return record


def handle_microgame_written(clients, microgame_id: str, before, after):
    db = clients.db

    def ripple(writes: DocumentWrites, record):
        name = after.get("name")

        if updated(before, after, "name"):
            for doc in _query(db, CUSTOM_MICROGAMES, "baseMicrogameId", "==", microgame_id):
                if (doc.to_dict() or {}).get("baseMicrogameName") != name:
                    writes.update(doc.reference, {"baseMicrogameName": name})

        was_active = before is not None and before.get("isActive") is not False
        is_active = after.get("isActive") is not False
        # An archived microgame is named in the status of every macrogame using it.
        refreshes_macrogames = updated(before, after, "length", "mechanicType") or (
            not is_active and updated(before, after, "name")
        )
        if was_active == is_active and not refreshes_macrogames:
            return

        macrogames = list(_query(db, MACROGAMES, "flowMicrogameIds", "array_contains", microgame_id))

        if refreshes_macrogames:
            for doc in macrogames:
                writes.touch(doc.reference)

        if was_active and not is_active:
            archived = archived_microgame_status(name)
            for doc in macrogames:
                logging.warning(
                    f"Microgame {microgame_id} was archived, marking macrogame {doc.id} as having issues."
                )
                if (doc.to_dict() or {}).get("status") != archived:
                    writes.update(doc.reference, {"status": archived})

        if is_active and not was_active and macrogames:
            all_microgames = load_all(db, MICROGAMES)
            for doc in macrogames:
                macrogame = doc.to_dict() or {}
                screen_id = macrogame.get("conversionScreenId")
                screen_exists = not screen_id or get_doc(db, CONVERSION_SCREENS, screen_id) is not None
                health = macrogame_status(macrogame, all_microgames, screen_exists=screen_exists)
                if health["code"] == STATUS_OK:
                    logging.info(f"Microgame {microgame_id} was reactivated, marking macrogame {doc.id} as ok.")
                else:
                    logging.info(
                        f"Microgame {microgame_id} was reactivated, but macrogame {doc.id} still has issues: {health['message']}"
                    )
                if macrogame.get("status") != health:
                    writes.update(doc.reference, {"status": health})

    return _sync_document(clients, MICROGAMES, microgame_id, after, ripple if after is not None else None)


def handle_custom_microgame_written(clients, variant_id: str, before, after):
    return _sync_document(clients, CUSTOM_MICROGAMES, variant_id, after)


def handle_conversion_method_written(clients, method_id: str, before, after):
    db = clients.db

    def ripple(writes: DocumentWrites, record):
        if not changed(before, after, "name", "type"):
            return
        for doc in _query(db, CONVERSION_SCREENS, "methodIdList", "array_contains", method_id):
            writes.touch(doc.reference)

    return _sync_document(clients, CONVERSION_METHODS, method_id, after, ripple if after is not None else None)


def handle_conversion_screen_written(clients, screen_id: str, before, after):
    db = clients.db

    def ripple(writes: DocumentWrites, record):
        if not changed(before, after, "status", "methodIdList", "methodTypes"):
            return
        for doc in _query(db, MACROGAMES, "conversionScreenId", "==", screen_id):
            writes.touch(doc.reference)

    return _sync_document(clients, CONVERSION_SCREENS, screen_id, after, ripple if after is not None else None)


def handle_macrogame_written(clients, macrogame_id: str, before, after):
    db = clients.db

    def ripple(writes: DocumentWrites, record):
        name_changed = updated(before, after, "name")
        status_changed = updated(before, after, "status")
        if not (name_changed or status_changed):
            return
        name = after.get("name")
        for doc in _query(db, DELIVERY_CONTAINERS, "macrogameId", "==", macrogame_id):
            if name_changed and (doc.to_dict() or {}).get("macrogameName") != name:
                writes.update(doc.reference, {"macrogameName": name})
            writes.touch(doc.reference)

    return _sync_document(clients, MACROGAMES, macrogame_id, after, ripple if after is not None else None)


def handle_container_written(clients, container_id: str, before, after):
    db = clients.db

    def ripple(writes: DocumentWrites, record):
        if not updated(before, after, "deliveryMethod"):
            return
        for doc in _query(db, CAMPAIGNS, "containerIdList", "array_contains", container_id):
            writes.touch(doc.reference)

    return _sync_document(clients, DELIVERY_CONTAINERS, container_id, after, ripple if after is not None else None)


def handle_campaign_written(clients, campaign_id: str, before, after):
    return _sync_document(clients, CAMPAIGNS, campaign_id, after)


WRITE_HANDLERS = {
    MICROGAMES: handle_microgame_written,
    CUSTOM_MICROGAMES: handle_custom_microgame_written,
    CONVERSION_METHODS: handle_conversion_method_written,
    CONVERSION_SCREENS: handle_conversion_screen_written,
    MACROGAMES: handle_macrogame_written,
    DELIVERY_CONTAINERS: handle_container_written,
    CAMPAIGNS: handle_campaign_written,
}
