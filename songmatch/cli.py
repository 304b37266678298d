#!/usr/bin/env python3
"""
Command-line tools for the fingerprint catalog.

Usage:
    python -m songmatch.cli index ./data/db_tracks
    python -m songmatch.cli add song.mp3 --title "Song" --artist "Artist"
    python -m songmatch.cli recognize ./data/queries/clip.wav --plot match.png
    python -m songmatch.cli fingerprint clip.wav --plot stars.png --output query.json
    python -m songmatch.cli stats
    python -m songmatch.cli delete 3
"""

import argparse
import json
import sys

from songmatch import open_store
from songmatch.database import FingerprintDatabase
from songmatch.errors import SongMatchError
from songmatch.fallback import FallbackClient, external_track_url
from songmatch.fingerprint import fingerprint_file
from songmatch.logging_config import setup_logger
from songmatch.matcher import batched_lookup, group_by_song
from songmatch.protocol import serialize_fingerprint
from songmatch.recognizer import Recognizer
from songmatch.registrar import CatalogRegistrar

logger = setup_logger(__name__)


def _save_if_needed(store, args):
    if isinstance(store, FingerprintDatabase):
        store.save(args.db)


def cmd_index(store, args):
    registered = CatalogRegistrar(store).index_directory(args.folder, args.pattern)
    _save_if_needed(store, args)
    print(f"✓ Indexed {len(registered)} song(s); catalog holds {store.total_songs()}")


def cmd_add(store, args):
    song = CatalogRegistrar(store).register_file(
        args.file, title=args.title, artist=args.artist, external_ref=args.external_ref
    )
    _save_if_needed(store, args)
    print(f"✓ Added song #{song.song_id}: {song.title} - {song.artist}")


def cmd_recognize(store, args):
    recognizer = Recognizer(
        store, fallback=FallbackClient.from_config(), max_results=args.top
    )
    recognition = recognizer.identify_file(args.file)

    if recognition.matches:
        print(f"\n{'ID':<5} {'Title':<30} {'Artist':<20} {'Score':<7} {'Offset':<8}")
        print(f"{'-'*72}")
        for m in recognition.matches:
            print(
                f"{m.song_id:<5} {m.song.title[:28]:<30} {m.song.artist[:18]:<20} "
                f"{m.score:<7} {m.offset_seconds:<8.2f}"
            )
    elif recognition.external_track_id:
        print(
            "Identified by fallback service: "
            f"{external_track_url(recognition.external_track_id)}"
        )
        if recognition.catalog_song:
            print(f"  catalog song #{recognition.catalog_song.song_id}: "
                  f"{recognition.catalog_song.title}")
    else:
        print("✗ No match found")

    if args.plot and recognition.matches:
        from songmatch.visualize import visualize_match

        best = recognition.best
        fingerprint, _ = fingerprint_file(args.file)
        pairs = group_by_song(fingerprint, batched_lookup(store, fingerprint.keys()))
        visualize_match(
            pairs.get(best.song_id, []),
            best.offset,
            best.score,
            title=best.song.title,
            save_path=args.plot,
        )


def cmd_fingerprint(store, args):
    fingerprint, metadata = fingerprint_file(args.file, save_plot=args.plot)
    print(
        f"{metadata['num_peaks']} peaks, {len(fingerprint)} hashes "
        f"({metadata['hashes_per_second']:.1f}/s over {metadata['duration']:.2f}s)"
    )
    if args.output:
        with open(args.output, "w") as f:
            json.dump({"fingerprint": serialize_fingerprint(fingerprint)}, f)
        print(f"✓ Query payload written to {args.output}")


def cmd_stats(store, args):
    store.print_stats()
    for song in store.all_songs():
        print(f"{song.song_id:<5} {song.title[:28]:<30} {song.artist[:20]:<22} "
              f"{song.external_ref or ''}")


def cmd_delete(store, args):
    CatalogRegistrar(store).delete(args.song_id)
    _save_if_needed(store, args)
    print(f"✓ Deleted song #{args.song_id}")


def build_parser():
    parser = argparse.ArgumentParser(description="Song fingerprint catalog tools")
    parser.add_argument("--store", choices=["sqlite", "memory"], default=None)
    parser.add_argument("--db", default=None, help="Database file path")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("index", help="Index every audio file in a folder")
    p.add_argument("folder")
    p.add_argument("--pattern", default=None)
    p.set_defaults(func=cmd_index)

    p = sub.add_parser("add", help="Add one audio file")
    p.add_argument("file")
    p.add_argument("--title")
    p.add_argument("--artist")
    p.add_argument("--external-ref", dest="external_ref")
    p.set_defaults(func=cmd_add)

    p = sub.add_parser("recognize", help="Identify an audio clip")
    p.add_argument("file")
    p.add_argument("--top", type=int, default=5)
    p.add_argument("--plot", default=None, help="Save alignment plot to this path")
    p.set_defaults(func=cmd_recognize)

    p = sub.add_parser("fingerprint", help="Fingerprint a file without touching the catalog")
    p.add_argument("file")
    p.add_argument("--plot", default=None, help="Save constellation map to this path")
    p.add_argument("--output", default=None, help="Write a /api/match request body")
    p.set_defaults(func=cmd_fingerprint)

    p = sub.add_parser("stats", help="Print catalog statistics")
    p.set_defaults(func=cmd_stats)

    p = sub.add_parser("delete", help="Delete a song and its fingerprints")
    p.add_argument("song_id", type=int)
    p.set_defaults(func=cmd_delete)

    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    store = open_store(args.store, args.db)
    try:
        args.func(store, args)
    except SongMatchError as e:
        if not e.user_facing:
            logger.exception("Command failed")
        print(f"✗ {e}", file=sys.stderr)
        return 1
    finally:
        store.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
