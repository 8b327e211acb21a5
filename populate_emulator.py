# Seeds the Firestore emulator with a small, internally consistent data set
# covering every synced collection, including a few deliberately broken links.
import os

# --- Data Definitions ---

# Microgames master list
microgames_data = [
    {
        "id": "mg_catch",
        "data": {"name": "Catch", "isActive": True, "mechanicType": "skill", "length": 5, "baseType": "catch"},
    },
    {
        "id": "mg_claw",
        "data": {"name": "Claw", "isActive": True, "mechanicType": "chance", "length": 8, "baseType": "claw"},
    },
    {
        "id": "mg_avoid",
        "data": {"name": "Avoid", "isActive": False, "mechanicType": "skill", "length": 6, "baseType": "avoid"},
    },  # Archived: macrogames using it should be flagged
]

custom_microgames_data = [
    {
        "id": "var_catch_holiday",
        "data": {"name": "Catch (Holiday)", "baseMicrogameId": "mg_catch", "baseMicrogameName": "Catch"},
    },
]

conversion_methods_data = [
    {"id": "cm_coupon", "data": {"name": "10% Coupon", "type": "coupon_display", "headline": "Your code"}},
    {"id": "cm_email", "data": {"name": "Newsletter", "type": "email_capture", "headline": "Join us"}},
]

conversion_screens_data = [
    {
        "id": "cs_main",
        "data": {
            "name": "Main Reward Screen",
            "headline": "You won!",
            "methods": [
                {"instanceId": "i1", "methodId": "cm_coupon"},
                {"instanceId": "i2", "methodId": "cm_email"},
            ],
        },
    },
    {"id": "cs_empty", "data": {"name": "Empty Screen", "headline": "", "methods": []}},
]

macrogames_data = [
    {
        "id": "mac_holiday",
        "data": {
            "name": "Holiday Rush",
            "category": "Retail",
            "config": {
                "titleScreenDuration": 2000,
                "controlsScreenDuration": 1000,
                "backgroundMusicUrl": None,
                "screenFlowType": "Separate",
            },
            "introScreen": {"enabled": True, "duration": 3},
            "promoScreen": {"enabled": False, "duration": 0},
            "flow": [
                {"microgameId": "mg_catch", "variantId": "var_catch_holiday", "order": 1},
                {"microgameId": "mg_claw", "variantId": None, "order": 2},
            ],
            "conversionScreenId": "cs_main",
        },
    },
    {
        "id": "mac_archived",
        "data": {
            "name": "Dodge Day",
            "category": "Retail",
            "config": {"titleScreenDuration": 2000, "controlsScreenDuration": 0, "screenFlowType": "Combined"},
            "introScreen": {"enabled": False, "duration": 0},
            "flow": [{"microgameId": "mg_avoid", "variantId": None, "order": 1}],
            "conversionScreenId": None,
        },
    },  # Uses an archived microgame
]

delivery_containers_data = [
    {
        "id": "dc_popup",
        "data": {
            "name": "Homepage Popup",
            "macrogameId": "mac_holiday",
            "macrogameName": "Holiday Rush",
            "skinId": "configurable-popup",
            "deliveryMethod": "popup_modal",
            "campaignId": "camp_spring",
        },
    },
    {
        "id": "dc_section",
        "data": {
            "name": "Footer Section",
            "macrogameId": "mac_archived",
            "macrogameName": "Old Name",
            "skinId": "configurable-popup",
            "deliveryMethod": "on_page_section",
        },
    },  # Stale macrogameName and an unhealthy macrogame
    {
        "id": "dc_unconfigured",
        "data": {"name": "New Container", "macrogameId": None, "macrogameName": None},
    },
]

_weekdays = {d: True for d in ("monday", "tuesday", "wednesday", "thursday", "friday")}

campaigns_data = [
    {
        "id": "camp_spring",
        "data": {
            "name": "Spring Sale",
            "status": "Active",
            "goal": "Email signups",
            "displayRules": [
                {
                    "id": "rule_1",
                    "name": "Weekday exit intent",
                    "trigger": "exit_intent",
                    "audience": "all_visitors",
                    "schedule": {"days": _weekdays, "startTime": "09:00", "endTime": "17:00", "timezone": "UTC"},
                    "containers": [
                        {"containerId": "dc_popup", "weight": 60},
                        {"containerId": "dc_section", "weight": 40},
                    ],
                },
            ],
        },
    },
]

SEED_DATA = [
    ("microgames", microgames_data),
    ("customMicrogames", custom_microgames_data),
    ("conversionMethods", conversion_methods_data),
    ("conversionScreens", conversion_screens_data),
    ("macrogames", macrogames_data),
    ("deliveryContainers", delivery_containers_data),
    ("campaigns", campaigns_data),
]


# --- Population Logic ---


def populate(db) -> int:
    """Write every seed document. Returns the number written."""
    written = 0
    for collection, documents in SEED_DATA:
        print(f"\nPopulating '{collection}' collection...")
        ref = db.collection(collection)
        for doc in documents:
            try:
                ref.document(doc["id"]).set(doc["data"])
                written += 1
                print(f"  Added/Updated {collection} document: {doc['id']}")
            except Exception as e:
                print(f"  Error adding {collection} document {doc['id']}: {e}")
    return written


def main():
    import firebase_admin
    from firebase_admin import firestore

    # Point the SDK to the Firestore emulator
    os.environ.setdefault("FIRESTORE_EMULATOR_HOST", "localhost:8080")

    try:
        # No specific service account key needed when running against emulator
        firebase_admin.initialize_app()
        print("Firebase Admin SDK initialized successfully.")
    except ValueError as e:
        # Handle cases where it might already be initialized (e.g., running script multiple times)
        if "The default Firebase app already exists" in str(e):
            print("Firebase Admin SDK already initialized.")
        else:
            raise e

    db = firestore.client()
    print("Firestore client obtained.")
    populate(db)
    print("\nEmulator population script finished.")


if __name__ == "__main__":
    main()
