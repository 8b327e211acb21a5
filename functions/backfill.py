"""Full re-derivation of the Algolia indices from Firestore.

Collections are processed strictly in dependency order because later
transformers read the current documents of earlier collections. Within one
collection every document is transformed concurrently, then the records are
saved with a single bulk call before the next collection starts.

The callable backfill never deletes index records whose documents have gone
away; the scheduled consistency sweep does that after re-running the backfill.
"""

from __future__ import annotations

import logging
import traceback
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List

from firebase_admin import firestore
from firebase_functions import https_fn

from config import BACKFILL_ORDER, BACKFILL_RUNS_COLLECTION
from indexer import save_records, sweep_stale_records
from transformers import transform

TRANSFORM_WORKERS = 16


class BackfillError(Exception):
    """A collection failed mid-backfill. `counts` covers the completed ones."""

    def __init__(self, collection: str, counts: Dict[str, int], cause: Exception):
        super().__init__(f"Backfill failed on '{collection}': {cause}")
        self.collection = collection
        self.counts = counts
        self.cause = cause


def backfill_collection(clients, collection: str) -> int:
    """Transform and bulk-save every document of one collection."""
    db = clients.db
    index = clients.index(collection)
    docs = list(db.collection(collection).stream())
    if not docs:
        return 0

    def _transform(doc):
        return doc.id, transform(db, collection, doc.to_dict() or {})

    with ThreadPoolExecutor(max_workers=min(TRANSFORM_WORKERS, len(docs))) as pool:
        records = list(pool.map(_transform, docs))

    return save_records(index, records)


def backfill_all(clients, collections: List[str] | None = None) -> Dict[str, int]:
    """Backfill every collection in order. Returns records written per collection."""
    counts: Dict[str, int] = {}
    for collection in collections or BACKFILL_ORDER:
        logging.info(f"Backfilling {collection}...")
        try:
            counts[collection] = backfill_collection(clients, collection)
        except Exception as e:
            raise BackfillError(collection, dict(counts), e) from e
        logging.info(f"Backfilled {counts[collection]} {collection} record(s)")
    return counts


def sweep_all_stale(clients, collections: List[str] | None = None) -> Dict[str, int]:
    """Remove index records with no Firestore document. Returns removals per collection."""
    removed: Dict[str, int] = {}
    for collection in collections or BACKFILL_ORDER:
        live_ids = [doc.id for doc in clients.db.collection(collection).stream()]
        removed[collection] = len(sweep_stale_records(clients.index(collection), live_ids))
    return removed


# --- Run log ---


def start_run_log(db, run_type: str, initiated_by: str | None):
    """Create a backfill run entry. Returns its reference, or None if logging failed."""
    try:
        run_doc = db.collection(BACKFILL_RUNS_COLLECTION).document()
        run_doc.set(
            {
                "type": run_type,
                "status": "running",
                "initiatedBy": initiated_by,
                "startTime": firestore.SERVER_TIMESTAMP,
            }
        )
        return run_doc
    except Exception as e:
        logging.warning(f"Could not write backfill run start log: {e}")
        return None


def finish_run_log(run_doc, status: str, **fields) -> None:
    if run_doc is None:
        return
    try:
        run_doc.update({"status": status, "endTime": firestore.SERVER_TIMESTAMP, **fields})
    except Exception as e:
        logging.warning(f"Could not update backfill run log: {e}")


# --- Entry points ---


def _internal_error(e: Exception, counts=None, collection=None) -> https_fn.HttpsError:
    cause = e.cause if isinstance(e, BackfillError) else e
    return https_fn.HttpsError(
        code=https_fn.FunctionsErrorCode.INTERNAL,
        message=str(cause) or "An unknown error occurred during the backfill.",
        details={
            "collection": collection,
            "counts": counts or {},
            "stack": "".join(traceback.format_exception(type(cause), cause, cause.__traceback__)),
        },
    )


def handle_backfill_request(req, get_clients) -> dict:
    """Body of the callable backfill. Requires an authenticated caller.

    `get_clients` is only called once the caller is authenticated, so a rejected
    request never resolves credentials or touches Firestore.
    """
    auth = getattr(req, "auth", None)
    if auth is None:
        raise https_fn.HttpsError(
            code=https_fn.FunctionsErrorCode.UNAUTHENTICATED,
            message="User must be authenticated.",
        )

    initiated_by = getattr(auth, "uid", None)
    try:
        clients = get_clients()
    except Exception as e:
        logging.exception("Could not build clients for the Algolia backfill")
        raise _internal_error(e)

    run_doc = start_run_log(clients.db, "search_index", initiated_by)
    logging.info(f"Backfill to Algolia started by {initiated_by}")

    try:
        counts = backfill_all(clients)
    except BackfillError as e:
        logging.exception(f"Error during Algolia backfill of {e.collection}")
        finish_run_log(run_doc, "failed", error=str(e.cause), counts=e.counts)
        raise _internal_error(e, counts=e.counts, collection=e.collection)
    except Exception as e:
        logging.exception("Error during Algolia backfill")
        finish_run_log(run_doc, "failed", error=str(e))
        raise _internal_error(e)

    finish_run_log(run_doc, "success", counts=counts)
    return {
        "success": True,
        "message": "Successfully backfilled all data to Algolia.",
        "counts": counts,
    }


def run_consistency_sweep(clients) -> dict:
    """Re-derive every index, then drop records for deleted documents."""
    run_doc = start_run_log(clients.db, "consistency_sweep", None)
    try:
        counts = backfill_all(clients)
        removed = sweep_all_stale(clients)
    except BackfillError as e:
        finish_run_log(run_doc, "failed", error=str(e.cause), counts=e.counts)
        raise
    except Exception as e:
        finish_run_log(run_doc, "failed", error=str(e))
        raise

    finish_run_log(run_doc, "success", counts=counts, removed=removed)
    logging.info(f"Consistency sweep done: counts={counts} removed={removed}")
    return {"counts": counts, "removed": removed}
