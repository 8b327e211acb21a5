"""
Delete-trigger handlers for the synced collections.

When a document that others reference by id is deleted, its index record is
removed and every referencing document is unlinked in one batch. Those updates
re-fire the referencing documents' write triggers, which recompute their status.
The index delete and the batch commit are independent and both awaited.
"""

import logging

from config import (
    CAMPAIGNS,
    CONVERSION_METHODS,
    CONVERSION_SCREENS,
    CUSTOM_MICROGAMES,
    DELIVERY_CONTAINERS,
    MACROGAMES,
    MICROGAMES,
)
from indexer import delete_record
from sync_handlers import DocumentWrites
from utils import run_concurrently


def _referencing(db, collection, field, op, value):
    return db.collection(collection).where(field, op, value).stream()


def _cleanup(clients, collection: str, doc_id: str, unlink) -> int:
    """Delete the index record and commit the unlink batch built by `unlink`."""
    writes = DocumentWrites(clients.db)
    unlink(writes)

    index = clients.index(collection)
    run_concurrently(
        lambda: delete_record(index, doc_id),
        writes.committer(),
    )
    logging.info(
        f"Deleted {collection}/{doc_id} from index and unlinked {len(writes)} referencing document(s)"
    )
    return len(writes)


def handle_microgame_deleted(clients, microgame_id: str) -> int:
    db = clients.db

    def unlink(writes: DocumentWrites):
        # Macrogames keep the dangling step; their status recomputes to an error.
        for doc in _referencing(db, MACROGAMES, "flowMicrogameIds", "array_contains", microgame_id):
            writes.touch(doc.reference)
        for doc in _referencing(db, CUSTOM_MICROGAMES, "baseMicrogameId", "==", microgame_id):
            writes.touch(doc.reference)

    return _cleanup(clients, MICROGAMES, microgame_id, unlink)


def handle_custom_microgame_deleted(clients, variant_id: str) -> int:
    db = clients.db

    def unlink(writes: DocumentWrites):
        for doc in _referencing(db, MACROGAMES, "variantIdList", "array_contains", variant_id):
            data = doc.to_dict() or {}
            new_flow = [
                {**step, "variantId": None} if (step or {}).get("variantId") == variant_id else step
                for step in (data.get("flow") or [])
            ]
            writes.update(doc.reference, {"flow": new_flow})

    return _cleanup(clients, CUSTOM_MICROGAMES, variant_id, unlink)


def handle_conversion_method_deleted(clients, method_id: str) -> int:
    db = clients.db

    def unlink(writes: DocumentWrites):
        for doc in _referencing(db, CONVERSION_SCREENS, "methodIdList", "array_contains", method_id):
            data = doc.to_dict() or {}
            new_methods = [m for m in (data.get("methods") or []) if (m or {}).get("methodId") != method_id]
            writes.update(doc.reference, {"methods": new_methods})

    return _cleanup(clients, CONVERSION_METHODS, method_id, unlink)


def handle_conversion_screen_deleted(clients, screen_id: str) -> int:
    db = clients.db

    def unlink(writes: DocumentWrites):
        for doc in _referencing(db, MACROGAMES, "conversionScreenId", "==", screen_id):
            writes.update(doc.reference, {"conversionScreenId": None})

    return _cleanup(clients, CONVERSION_SCREENS, screen_id, unlink)


def handle_macrogame_deleted(clients, macrogame_id: str) -> int:
    db = clients.db

    def unlink(writes: DocumentWrites):
        for doc in _referencing(db, DELIVERY_CONTAINERS, "macrogameId", "==", macrogame_id):
            writes.update(doc.reference, {"macrogameId": None, "macrogameName": None})

    return _cleanup(clients, MACROGAMES, macrogame_id, unlink)


def handle_container_deleted(clients, container_id: str) -> int:
    db = clients.db

    def unlink(writes: DocumentWrites):
        for doc in _referencing(db, CAMPAIGNS, "containerIdList", "array_contains", container_id):
            data = doc.to_dict() or {}
            new_rules = [
                {
                    **rule,
                    "containers": [
                        c for c in (rule.get("containers") or []) if (c or {}).get("containerId") != container_id
                    ],
                }
                for rule in (r or {} for r in (data.get("displayRules") or []))
            ]
            writes.update(doc.reference, {"displayRules": new_rules})

    return _cleanup(clients, DELIVERY_CONTAINERS, container_id, unlink)


def handle_campaign_deleted(clients, campaign_id: str) -> int:
    db = clients.db

    def unlink(writes: DocumentWrites):
        for doc in _referencing(db, DELIVERY_CONTAINERS, "campaignId", "==", campaign_id):
            writes.update(doc.reference, {"campaignId": None})

    return _cleanup(clients, CAMPAIGNS, campaign_id, unlink)


DELETE_HANDLERS = {
    MICROGAMES: handle_microgame_deleted,
    CUSTOM_MICROGAMES: handle_custom_microgame_deleted,
    CONVERSION_METHODS: handle_conversion_method_deleted,
    CONVERSION_SCREENS: handle_conversion_screen_deleted,
    MACROGAMES: handle_macrogame_deleted,
    DELIVERY_CONTAINERS: handle_container_deleted,
    CAMPAIGNS: handle_campaign_deleted,
}
