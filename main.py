# Main script to download entries for offline reading and sync their status
import sys
import argparse
import logging

from config_loader import load_config
from logger_setup import setup_logging
from api_clients import miniflux_client
from entry_materializer import EntryMaterializer
from metadata_store import MetadataStore
from models import MaterializeOptions
from offline_queue import OfflineQueue
from status_sync import StatusSyncEngine
import constants


def _parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="offline-reader",
                                     description="Download feed entries for offline reading.")
    parser.add_argument("--config", default="config.json", help="Path to the JSON config file.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output.")
    sub = parser.add_subparsers(dest="command", required=True)

    download = sub.add_parser("download", help="Download entries by id.")
    download.add_argument("entry_ids", nargs="+", type=int)
    download.add_argument("--no-images", action="store_true", help="Skip image downloads.")

    unread = sub.add_parser("unread", help="Refresh unread entries, sync status and download them.")
    unread.add_argument("--limit", type=int, default=100)
    unread.add_argument("--no-images", action="store_true", help="Skip image downloads.")

    status = sub.add_parser("status", help="Mark an entry read or unread.")
    status.add_argument("entry_id", type=int)
    status.add_argument("new_status", choices=sorted(constants.VALID_STATUSES))
    star = status.add_mutually_exclusive_group()
    star.add_argument("--star", dest="starred", action="store_const", const=True)
    star.add_argument("--unstar", dest="starred", action="store_const", const=False)

    sub.add_parser("drain", help="Push queued status changes to the server.")
    sub.add_parser("check", help="Check that the server is reachable with the configured token.")

    delete = sub.add_parser("delete", help="Delete downloaded entries.")
    delete.add_argument("entry_ids", nargs="+", type=int)
    return parser.parse_args(argv)


def _download(entries, materializer, include_images):
    options = MaterializeOptions(include_images=include_images,
                                 ordering_context=tuple(entry.id for entry in entries))
    results = materializer.materialize_many(entries, options)
    for result in results:
        print(result.summary)
    return 0 if all(result.ok for result in results) else 1


# --- Main Execution ---
def main(argv=None):
    """Main function to dispatch the requested command."""
    args = _parse_args(argv)
    config = load_config(args.config)
    setup_logging(config['log_file'], verbose=args.verbose)

    metadata_store = MetadataStore(config['download_dir'])
    queue = OfflineQueue(config['queue_file'], retry_limit=config['queue_retry_limit'])
    materializer = EntryMaterializer(config, metadata_store=metadata_store)
    sync_engine = StatusSyncEngine(config, metadata_store, queue)
    include_images = config['include_images'] and not getattr(args, 'no_images', False)

    if args.command == "download":
        entries = []
        for entry_id in args.entry_ids:
            if materializer.is_materialized(entry_id):
                print(f"Entry {entry_id} already downloaded")
                continue
            entry = miniflux_client.fetch_entry(entry_id, config=config)
            if entry is None:
                logging.error(f"Could not fetch entry {entry_id} from the server.")
                continue
            entries.append(entry)
        return _download(entries, materializer, include_images) if entries else 0

    if args.command == "unread":
        entries = miniflux_client.fetch_entries(config=config, status=constants.STATUS_UNREAD, limit=args.limit)
        if entries is None:
            logging.error("Failed to fetch unread entries. Working offline.")
            return 1
        sync_engine.reconcile(entries)
        sync_engine.drain_queue()
        return _download(entries, materializer, include_images)

    if args.command == "status":
        result = sync_engine.change_status(args.entry_id, args.new_status, args.starred)
        print(f"Entry {result.entry_id}: {result.status}"
              f"{' (starred)' if result.starred else ''}"
              f"{'' if result.synced else ', will sync later'}")
        return 0

    if args.command == "drain":
        synced = sync_engine.drain_queue()
        print(f"Synced {synced} entr{'y' if synced == 1 else 'ies'}; {queue.count()} still queued")
        return 0

    if args.command == "check":
        reachable = miniflux_client.check_connectivity(config=config)
        print(f"Server {config['server_address']} is {'reachable' if reachable else 'unreachable'}")
        return 0 if reachable else 1

    if args.command == "delete":
        failed = [entry_id for entry_id in args.entry_ids if not metadata_store.delete(entry_id)]
        return 1 if failed else 0

    return 2


if __name__ == "__main__":
    sys.exit(main())
