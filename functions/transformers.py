"""
Transformers that turn a raw Firestore document into its Algolia record.

Each transformer takes the Firestore client and the document body, reads the
current state of any related collection it depends on, and returns a new dict:
the original fields plus computed ones (computed fields win). The input is
never mutated. Missing arrays and sub-objects are treated as empty.

Health is reported as a `status` dict, {"code": "ok"|"error", "message": str}.
Field presence is checked before any lookup, and the first failure wins.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable

from config import (
    CAMPAIGNS,
    CONVERSION_METHODS,
    CONVERSION_SCREENS,
    CUSTOM_MICROGAMES,
    DELIVERY_CONTAINERS,
    MACROGAMES,
    MICROGAMES,
)
from utils import unique

STATUS_OK = "ok"
STATUS_ERROR = "error"

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday")
WEEKEND = ("saturday", "sunday")


def ok_status() -> Dict[str, str]:
    return {"code": STATUS_OK, "message": ""}


def error_status(message: str) -> Dict[str, str]:
    return {"code": STATUS_ERROR, "message": message}


def archived_microgame_status(name) -> Dict[str, str]:
    return error_status(f"Contains an archived microgame: {name}")


# --- Firestore reads ---


def get_doc(db, collection: str, doc_id: str) -> Dict[str, Any] | None:
    snap = db.collection(collection).document(doc_id).get()
    if not snap.exists:
        return None
    return snap.to_dict() or {}


def get_docs(db, collection: str, doc_ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
    """Fetch several documents by id in one round trip. Missing ids are absent."""
    ids = unique(doc_ids)
    if not ids:
        return {}
    refs = [db.collection(collection).document(doc_id) for doc_id in ids]
    found = {}
    for snap in db.get_all(refs):
        if snap.exists:
            found[snap.id] = snap.to_dict() or {}
    return found


def load_all(db, collection: str) -> Dict[str, Dict[str, Any]]:
    return {doc.id: doc.to_dict() or {} for doc in db.collection(collection).stream()}


# --- Macrogame health and duration ---


def _flow(macrogame: Dict[str, Any]) -> list:
    return [step or {} for step in (macrogame.get("flow") or [])]


def flow_issue(macrogame: Dict[str, Any], microgames_by_id: Dict[str, Dict[str, Any]]) -> str | None:
    """Return the message for the first broken flow step, or None."""
    flow = _flow(macrogame)
    if not flow:
        return "Macrogame has no microgames in its flow."
    for step in flow:
        microgame = microgames_by_id.get(step.get("microgameId"))
        if microgame is None:
            return "Contains a deleted microgame."
        if microgame.get("isActive") is False:
            return archived_microgame_status(microgame.get("name"))["message"]
    return None


def macrogame_status(
    macrogame: Dict[str, Any],
    microgames_by_id: Dict[str, Dict[str, Any]],
    screen_exists: bool = True,
) -> Dict[str, str]:
    """Full health of a macrogame given its microgames and screen existence."""
    issue = flow_issue(macrogame, microgames_by_id)
    if issue:
        return error_status(issue)
    if macrogame.get("conversionScreenId") and not screen_exists:
        return error_status("Linked conversion screen was deleted.")
    return ok_status()


def screen_time_per_game(config: Dict[str, Any]) -> float:
    title = (config.get("titleScreenDuration") or 0) / 1000
    controls = (config.get("controlsScreenDuration") or 0) / 1000
    flow_type = config.get("screenFlowType")
    if flow_type == "Separate":
        return title + controls
    if flow_type == "Combined":
        return title
    return 0


def calculate_duration(macrogame: Dict[str, Any], microgames_by_id: Dict[str, Dict[str, Any]]) -> float:
    """Total play time in seconds: intro, promo, then every flow step."""
    total = 0
    intro = macrogame.get("introScreen") or {}
    promo = macrogame.get("promoScreen") or {}
    if intro.get("enabled"):
        total += intro.get("duration") or 0
    if promo.get("enabled"):
        total += promo.get("duration") or 0

    per_game = screen_time_per_game(macrogame.get("config") or {})
    for step in _flow(macrogame):
        microgame = microgames_by_id.get(step.get("microgameId")) or {}
        total += (microgame.get("length") or 0) + per_game
    return total


# --- Transformers ---


def transform_macrogame_doc(db, macrogame: Dict[str, Any]) -> Dict[str, Any]:
    flow = _flow(macrogame)
    config = macrogame.get("config") or {}
    flow_microgame_ids = [step.get("microgameId") for step in flow]
    variant_id_list = [step.get("variantId") for step in flow if step.get("variantId")]

    microgames = get_docs(db, MICROGAMES, flow_microgame_ids)

    screen_id = macrogame.get("conversionScreenId")
    screen = get_doc(db, CONVERSION_SCREENS, screen_id) if screen_id else None
    status = macrogame_status(macrogame, microgames, screen_exists=screen is not None)

    tags = []
    conversion_method_types = []
    if screen is not None:
        method_ids = [m.get("methodId") for m in (screen.get("methods") or []) if m]
        methods = get_docs(db, CONVERSION_METHODS, method_ids)
        conversion_method_types = unique(
            (methods.get(method_id) or {}).get("type") for method_id in method_ids
        )
    elif not screen_id:
        tags.append("no_conversion_methods")

    if not config.get("backgroundMusicUrl"):
        tags.append("music_url_null")

    mechanic_types = unique(
        (microgames.get(microgame_id) or {}).get("mechanicType") for microgame_id in flow_microgame_ids
    )

    return {
        **macrogame,
        "numGames": len(flow),
        "hasCustomGames": 1 if variant_id_list else 0,
        "conversionScreenId": screen_id or None,
        "isFavorite": bool(macrogame.get("isFavorite")),
        "duration": calculate_duration(macrogame, microgames),
        "status": status,
        "musicUrl": config.get("backgroundMusicUrl") or None,
        "conversionMethodTypes": conversion_method_types,
        "mechanicTypes": mechanic_types,
        "introScreen.enabled": 1 if (macrogame.get("introScreen") or {}).get("enabled") else 0,
        "promoScreen.enabled": 1 if (macrogame.get("promoScreen") or {}).get("enabled") else 0,
        "_tags": tags,
        "flowMicrogameIds": flow_microgame_ids,
        "variantIdList": variant_id_list,
    }


def transform_container_doc(db, container: Dict[str, Any]) -> Dict[str, Any]:
    macrogame_id = container.get("macrogameId")
    macrogame = get_doc(db, MACROGAMES, macrogame_id) if macrogame_id else None

    if not container.get("skinId"):
        status = error_status("Configuration Needed: Select a UI skin.")
    elif not macrogame_id:
        status = error_status("Configuration Needed: Select a Macrogame.")
    elif not container.get("deliveryMethod"):
        status = error_status("Configuration Needed: Select a delivery container type.")
    elif macrogame is None:
        status = error_status("Linked macrogame was deleted.")
    else:
        macrogame_health = macrogame.get("status") or {}
        if macrogame_health.get("code") == STATUS_ERROR:
            status = error_status(f"Linked macrogame has an issue: {macrogame_health.get('message', '')}")
        else:
            status = ok_status()

    return {
        **container,
        "macrogameName": macrogame.get("name") if macrogame is not None else None,
        "isCampaignLinked": bool(container.get("campaignId")),
        "campaignId": container.get("campaignId") or None,
        "status": status,
    }


def transform_conversion_screen_doc(db, screen: Dict[str, Any]) -> Dict[str, Any]:
    methods = [m or {} for m in (screen.get("methods") or [])]
    method_ids = [m.get("methodId") for m in methods]
    method_id_list = unique(method_ids)

    existing = get_docs(db, CONVERSION_METHODS, method_id_list)
    if not methods:
        status = error_status("Screen has no conversion methods.")
    elif any(method_id not in existing for method_id in method_ids):
        status = error_status("Screen links to a deleted conversion method.")
    else:
        status = ok_status()

    return {
        **screen,
        "status": status,
        "methodIdList": method_id_list,
        "methodTypes": unique(existing[m].get("type") for m in method_id_list if m in existing),
    }


def transform_conversion_method_doc(db, method: Dict[str, Any]) -> Dict[str, Any]:
    return {**method, "status": ok_status()}


def transform_microgame_doc(db, microgame: Dict[str, Any]) -> Dict[str, Any]:
    return {**microgame, "isActive": microgame.get("isActive") is not False}


def transform_custom_microgame_doc(db, variant: Dict[str, Any]) -> Dict[str, Any]:
    base_id = variant.get("baseMicrogameId")
    base = get_doc(db, MICROGAMES, base_id) if base_id else None
    if base is None:
        return {**variant, "status": error_status("Base microgame was deleted.")}
    return {**variant, "baseMicrogameName": base.get("name"), "status": ok_status()}


def transform_campaign_doc(db, campaign: Dict[str, Any]) -> Dict[str, Any]:
    rules = [r or {} for r in (campaign.get("displayRules") or [])]
    container_id_list = unique(
        c.get("containerId") for rule in rules for c in (rule.get("containers") or []) if c
    )

    delivery_methods = []
    if container_id_list:
        containers = get_docs(db, DELIVERY_CONTAINERS, container_id_list)
        delivery_methods = unique(
            (containers.get(container_id) or {}).get("deliveryMethod") for container_id in container_id_list
        )

    def days(rule):
        return (rule.get("schedule") or {}).get("days") or {}

    schedules = []
    if any(days(r).get(d) for r in rules for d in WEEKDAYS):
        schedules.append("Weekdays")
    if any(days(r).get(d) for r in rules for d in WEEKEND):
        schedules.append("Weekends")

    return {
        **campaign,
        "containerIdList": container_id_list,
        "deliveryMethods": delivery_methods,
        "audiences": unique(r.get("audience") for r in rules),
        "triggers": unique(r.get("trigger") for r in rules),
        "isAbTesting": 1 if any(len(r.get("containers") or []) > 1 for r in rules) else 0,
        "schedules": schedules,
    }


TRANSFORMERS = {
    MICROGAMES: transform_microgame_doc,
    CUSTOM_MICROGAMES: transform_custom_microgame_doc,
    CONVERSION_METHODS: transform_conversion_method_doc,
    CONVERSION_SCREENS: transform_conversion_screen_doc,
    MACROGAMES: transform_macrogame_doc,
    DELIVERY_CONTAINERS: transform_container_doc,
    CAMPAIGNS: transform_campaign_doc,
}


def transform(db, collection: str, doc: Dict[str, Any]) -> Dict[str, Any]:
    logging.debug(f"Transforming {collection} document for index")
    return TRANSFORMERS[collection](db, doc)
