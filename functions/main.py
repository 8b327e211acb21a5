# Cloud Functions for Firebase that mirror the admin portal collections into Algolia.
# Deploy with `firebase deploy --only functions`

from firebase_functions import (
    scheduler_fn,
    https_fn,
    firestore_fn,
    options,
)
from firebase_admin import initialize_app
import logging

from config import (
    CAMPAIGNS,
    CONVERSION_METHODS,
    CONVERSION_SCREENS,
    CUSTOM_MICROGAMES,
    DELIVERY_CONTAINERS,
    FUNCTION_REGION,
    FUNCTION_TIMEOUT_SEC,
    MACROGAMES,
    MICROGAMES,
    build_clients,
)
from utils import get_change_before_after, snapshot_to_dict
from sync_handlers import WRITE_HANDLERS
from reference_cleanup import DELETE_HANDLERS
from backfill import handle_backfill_request, run_consistency_sweep

# Set root logger level to INFO for better visibility in Cloud Run if default is higher
logging.getLogger().setLevel(logging.INFO)

initialize_app()

# Built on first use and reused for the lifetime of the instance.
_clients = None


def _get_clients():
    global _clients
    if _clients is None:
        _clients = build_clients()
    return _clients


TRIGGER_OPTIONS = {
    "region": FUNCTION_REGION,
    "memory": options.MemoryOption.MB_256,
    "timeout_sec": FUNCTION_TIMEOUT_SEC,
}


def _on_written(collection: str, param: str, event: firestore_fn.Event) -> None:
    doc_id = event.params[param]
    before, after = get_change_before_after(event.data)
    WRITE_HANDLERS[collection](
        _get_clients(), doc_id, snapshot_to_dict(before), snapshot_to_dict(after)
    )


def _on_deleted(collection: str, param: str, event: firestore_fn.Event) -> None:
    DELETE_HANDLERS[collection](_get_clients(), event.params[param])


# ---
# --- Firestore triggers (ON WRITE)
# ---


@firestore_fn.on_document_written(document="microgames/{microgameId}", **TRIGGER_OPTIONS)
def on_microgame_written(event: firestore_fn.Event[firestore_fn.Change]) -> None:
    _on_written(MICROGAMES, "microgameId", event)


@firestore_fn.on_document_written(document="customMicrogames/{variantId}", **TRIGGER_OPTIONS)
def on_custom_microgame_written(event: firestore_fn.Event[firestore_fn.Change]) -> None:
    _on_written(CUSTOM_MICROGAMES, "variantId", event)


@firestore_fn.on_document_written(document="conversionMethods/{methodId}", **TRIGGER_OPTIONS)
def on_conversion_method_written(event: firestore_fn.Event[firestore_fn.Change]) -> None:
    _on_written(CONVERSION_METHODS, "methodId", event)


@firestore_fn.on_document_written(document="conversionScreens/{screenId}", **TRIGGER_OPTIONS)
def on_conversion_screen_written(event: firestore_fn.Event[firestore_fn.Change]) -> None:
    _on_written(CONVERSION_SCREENS, "screenId", event)


@firestore_fn.on_document_written(document="macrogames/{macrogameId}", **TRIGGER_OPTIONS)
def on_macrogame_written(event: firestore_fn.Event[firestore_fn.Change]) -> None:
    _on_written(MACROGAMES, "macrogameId", event)


@firestore_fn.on_document_written(document="deliveryContainers/{containerId}", **TRIGGER_OPTIONS)
def on_container_written(event: firestore_fn.Event[firestore_fn.Change]) -> None:
    _on_written(DELIVERY_CONTAINERS, "containerId", event)


@firestore_fn.on_document_written(document="campaigns/{campaignId}", **TRIGGER_OPTIONS)
def on_campaign_written(event: firestore_fn.Event[firestore_fn.Change]) -> None:
    _on_written(CAMPAIGNS, "campaignId", event)


# ---
# --- Firestore triggers (ON DELETE)
# ---


@firestore_fn.on_document_deleted(document="microgames/{microgameId}", **TRIGGER_OPTIONS)
def on_microgame_deleted(event: firestore_fn.Event) -> None:
    _on_deleted(MICROGAMES, "microgameId", event)


@firestore_fn.on_document_deleted(document="customMicrogames/{variantId}", **TRIGGER_OPTIONS)
def on_custom_microgame_deleted(event: firestore_fn.Event) -> None:
    _on_deleted(CUSTOM_MICROGAMES, "variantId", event)


@firestore_fn.on_document_deleted(document="conversionMethods/{methodId}", **TRIGGER_OPTIONS)
def on_conversion_method_deleted(event: firestore_fn.Event) -> None:
    _on_deleted(CONVERSION_METHODS, "methodId", event)


@firestore_fn.on_document_deleted(document="conversionScreens/{screenId}", **TRIGGER_OPTIONS)
def on_conversion_screen_deleted(event: firestore_fn.Event) -> None:
    _on_deleted(CONVERSION_SCREENS, "screenId", event)


@firestore_fn.on_document_deleted(document="macrogames/{macrogameId}", **TRIGGER_OPTIONS)
def on_macrogame_deleted(event: firestore_fn.Event) -> None:
    _on_deleted(MACROGAMES, "macrogameId", event)


@firestore_fn.on_document_deleted(document="deliveryContainers/{containerId}", **TRIGGER_OPTIONS)
def on_container_deleted(event: firestore_fn.Event) -> None:
    _on_deleted(DELIVERY_CONTAINERS, "containerId", event)


@firestore_fn.on_document_deleted(document="campaigns/{campaignId}", **TRIGGER_OPTIONS)
def on_campaign_deleted(event: firestore_fn.Event) -> None:
    _on_deleted(CAMPAIGNS, "campaignId", event)


# ---
# --- Backfill
# ---


@https_fn.on_call(
    region=FUNCTION_REGION,
    memory=options.MemoryOption.MB_512,
    timeout_sec=540,
    cors=options.CorsOptions(cors_origins=["http://localhost:5173"], cors_methods=["post"]),
)
def backfill_data_to_algolia(req: https_fn.CallableRequest) -> https_fn.Response | dict:
    """Callable that re-derives every Algolia index. Returns per-collection counts."""
    return handle_backfill_request(req, _get_clients)


@scheduler_fn.on_schedule(
    schedule="0 3 * * *",
    region=FUNCTION_REGION,
    memory=options.MemoryOption.MB_512,
    timeout_sec=540,
)
def scheduled_consistency_sweep(event: scheduler_fn.ScheduledEvent) -> None:
    """Nightly backfill plus removal of index records for deleted documents."""
    result = run_consistency_sweep(_get_clients())
    logging.info(f"scheduled_consistency_sweep finished: {result}")
