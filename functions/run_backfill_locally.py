"""Utility to run backfill.backfill_all locally against configured Firestore.

This is useful when you want to run the backfill from a developer machine
instead of invoking the deployed callable. It uses Application Default
Credentials, so ensure you've run `gcloud auth application-default login`
or have a service account configured, and export ALGOLIA_APPID/ALGOLIA_APIKEY.

Pass --sweep to also delete index records whose documents no longer exist.
"""

import argparse
import logging

from backfill import backfill_all, finish_run_log, start_run_log, sweep_all_stale
from config import BACKFILL_ORDER, build_clients


def main(argv=None, clients=None):
    parser = argparse.ArgumentParser(description="Backfill the Algolia indices from Firestore.")
    parser.add_argument("--sweep", action="store_true", help="remove stale index records afterwards")
    parser.add_argument("collections", nargs="*", help="limit to these collections, always run in dependency order")
    args = parser.parse_args(argv)

    unknown = [c for c in args.collections if c not in BACKFILL_ORDER]
    if unknown:
        parser.error(f"unknown collection(s): {', '.join(unknown)}")
    collections = [c for c in BACKFILL_ORDER if c in args.collections] or None

    logging.basicConfig(level=logging.INFO)
    if clients is None:
        from firebase_admin import initialize_app

        initialize_app()
        clients = build_clients()

    # Create a log entry similar to deployed function behavior
    run_doc = start_run_log(clients.db, "search_index", None)

    logging.info("Starting backfill of Algolia indices...")
    try:
        counts = backfill_all(clients, collections)
        removed = sweep_all_stale(clients, collections) if args.sweep else {}
    except Exception as e:
        finish_run_log(run_doc, "failed", error=str(e))
        raise

    if args.sweep:
        finish_run_log(run_doc, "success", counts=counts, removed=removed)
    else:
        finish_run_log(run_doc, "success", counts=counts)

    for collection, count in counts.items():
        line = f"{collection}: {count} record(s)"
        if collection in removed:
            line += f", {removed[collection]} stale removed"
        print(line)
    return counts


if __name__ == "__main__":
    main()
