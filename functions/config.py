"""
Configuration and client wiring for the search sync functions.

Clients are built once per process and passed into every handler so tests can
substitute in-memory doubles for Firestore and Algolia.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict

MICROGAMES = "microgames"
CUSTOM_MICROGAMES = "customMicrogames"
CONVERSION_METHODS = "conversionMethods"
CONVERSION_SCREENS = "conversionScreens"
MACROGAMES = "macrogames"
DELIVERY_CONTAINERS = "deliveryContainers"
CAMPAIGNS = "campaigns"

# Referenced collections come before the collections that reference them.
# Later transformers read the current documents of earlier collections.
BACKFILL_ORDER = [
    MICROGAMES,
    CUSTOM_MICROGAMES,
    CONVERSION_METHODS,
    CONVERSION_SCREENS,
    MACROGAMES,
    DELIVERY_CONTAINERS,
    CAMPAIGNS,
]

# Index names match the collection names one to one.
INDEX_NAMES = list(BACKFILL_ORDER)

BACKFILL_RUNS_COLLECTION = "backfillRuns"

FUNCTION_REGION = "us-central1"
FUNCTION_TIMEOUT_SEC = 30

ALGOLIA_APP_ID_ENV = "ALGOLIA_APPID"
ALGOLIA_API_KEY_ENV = "ALGOLIA_APIKEY"


class ConfigurationError(RuntimeError):
    """Raised when the search service credentials cannot be resolved."""


@dataclass
class SyncClients:
    """Process-scoped handles shared by every trigger invocation."""

    db: Any
    indices: Dict[str, Any] = field(default_factory=dict)

    def index(self, collection: str):
        try:
            return self.indices[collection]
        except KeyError:
            raise ConfigurationError(f"No search index configured for '{collection}'")


def _project_id(environ) -> str | None:
    return environ.get("GOOGLE_CLOUD_PROJECT") or environ.get("GCLOUD_PROJECT")


def load_algolia_credentials(environ=None) -> tuple[str, str]:
    """Return (app_id, api_key).

    The process environment wins. When a value is missing there, the secret of
    the same name is read from Secret Manager.
    """
    environ = os.environ if environ is None else environ
    app_id = environ.get(ALGOLIA_APP_ID_ENV)
    api_key = environ.get(ALGOLIA_API_KEY_ENV)

    if not app_id or not api_key:
        project_id = _project_id(environ)
        if not project_id:
            raise ConfigurationError(
                f"{ALGOLIA_APP_ID_ENV}/{ALGOLIA_API_KEY_ENV} are not set and no project id is available for Secret Manager."
            )

        from utils import get_secret  # LAZY IMPORT

        try:
            app_id = app_id or get_secret(ALGOLIA_APP_ID_ENV, project_id)
            api_key = api_key or get_secret(ALGOLIA_API_KEY_ENV, project_id)
        except Exception as e:
            raise ConfigurationError(f"Could not read Algolia credentials from Secret Manager: {e}") from e
        logging.info(f"Loaded Algolia credentials from Secret Manager for project {project_id}")

    return app_id, api_key


def build_clients(db=None, search_client=None) -> SyncClients:
    """Construct the Firestore handle and one Algolia index per collection."""
    if db is None:
        from firebase_admin import firestore

        db = firestore.client()

    if search_client is None:
        from algoliasearch.search_client import SearchClient

        app_id, api_key = load_algolia_credentials()
        search_client = SearchClient.create(app_id, api_key)

    indices = {name: search_client.init_index(name) for name in INDEX_NAMES}
    return SyncClients(db=db, indices=indices)
