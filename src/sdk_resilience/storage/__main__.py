"""CLI tool for inspecting persisted recovery state.

Usage:
    python -m sdk_resilience.storage checkpoints <bucket-name> <key> [--path PATH]
    python -m sdk_resilience.storage incomplete <bucket-name> [--path PATH]
    python -m sdk_resilience.storage verify <bucket-name> [--path PATH] [--detailed]

Examples:
    # List checkpoints stored for one key, with checksum status
    python -m sdk_resilience.storage checkpoints sdk-state conversation:42

    # Show operations a crashed session left unfinished
    python -m sdk_resilience.storage incomplete sdk-state

    # Verify every checkpoint checksum in the snapshot
    python -m sdk_resilience.storage verify sdk-state --detailed

Exit codes:
    0: OK
    1: Problems found (corrupted checkpoints, unfinished operations, unknown key)
    2: Operational error (S3, network, malformed snapshot)
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import NoReturn

from botocore.exceptions import BotoCoreError, ClientError

from ..errors import ResilienceError
from ..recovery import RecoverySnapshot, checkpoint_is_valid
from ..result import Failure, Result, Success
from .persistence import DEFAULT_SNAPSHOT_PATH, StorePersistence
from .s3_store import S3VersionedStore


async def load_snapshot(bucket_name: str, path: str) -> Result[RecoverySnapshot, str]:
    """
    Load the persisted snapshot, mapping every failure to a message.

    A missing snapshot is an empty one.
    """
    try:
        async with S3VersionedStore(bucket_name) as store:
            snapshot = await StorePersistence(store, path).load()
    except ClientError as e:
        error = e.response.get("Error", {})
        return Failure(f"S3 error ({error.get('Code', 'Unknown')}): {error.get('Message', e)}")
    except BotoCoreError as e:
        return Failure(f"Network error: {e}")
    except ResilienceError as e:
        return Failure(str(e))
    return Success(snapshot if snapshot is not None else RecoverySnapshot())


async def cmd_checkpoints(bucket_name: str, key: str, path: str) -> int:
    """
    List checkpoints for a key.

    Returns:
        Exit code (0 = all valid, 1 = unknown key or corruption, 2 = error)
    """
    match await load_snapshot(bucket_name, path):
        case Failure(message):
            print(f"✗ Error: {message}", file=sys.stderr)
            return 2
        case Success(snapshot):
            history = snapshot.checkpoints.get(key, [])
            if not history:
                print(f"✗ No checkpoints for key: {key}", file=sys.stderr)
                return 1
            rows = [
                {**checkpoint.metadata().model_dump(), "valid": checkpoint_is_valid(checkpoint)}
                for checkpoint in history
            ]
            print(json.dumps(rows, indent=2))
            return 0 if all(row["valid"] for row in rows) else 1


async def cmd_incomplete(bucket_name: str, path: str) -> int:
    """
    List operations that were started but never completed.

    Returns:
        Exit code (0 = none, 1 = some outstanding, 2 = error)
    """
    match await load_snapshot(bucket_name, path):
        case Failure(message):
            print(f"✗ Error: {message}", file=sys.stderr)
            return 2
        case Success(snapshot):
            operations = sorted(snapshot.incomplete_operations, key=lambda op: op.started_at)
            if not operations:
                print(f"✓ No incomplete operations in bucket: {bucket_name}")
                return 0
            print(json.dumps([op.model_dump() for op in operations], indent=2))
            return 1


async def cmd_verify(bucket_name: str, path: str, detailed: bool = False) -> int:
    """
    Verify every checkpoint checksum in the snapshot.

    Returns:
        Exit code (0 = all valid, 1 = corruption found, 2 = error)
    """
    match await load_snapshot(bucket_name, path):
        case Failure(message):
            print(f"✗ Error: {message}", file=sys.stderr)
            return 2
        case Success(snapshot):
            corrupted = [
                {"key": key, "checkpoint_id": checkpoint.checkpoint_id}
                for key, history in snapshot.checkpoints.items()
                for checkpoint in history
                if not checkpoint_is_valid(checkpoint)
            ]
            total = sum(len(history) for history in snapshot.checkpoints.values())
            if detailed:
                print(
                    json.dumps(
                        {"is_valid": not corrupted, "checkpoints": total, "corrupted": corrupted},
                        indent=2,
                    ),
                    file=sys.stderr if corrupted else sys.stdout,
                )
            elif corrupted:
                print(f"✗ {len(corrupted)} of {total} checkpoints corrupted:", file=sys.stderr)
                for entry in corrupted:
                    print(f"  {entry['key']}: {entry['checkpoint_id']}", file=sys.stderr)
            else:
                print(f"✓ {total} checkpoints verified for bucket: {bucket_name}")
            return 1 if corrupted else 0


def main() -> NoReturn:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="sdk-resilience recovery state CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    checkpoints_parser = subparsers.add_parser("checkpoints", help="List checkpoints for a key")
    checkpoints_parser.add_argument("bucket_name", help="S3 bucket name")
    checkpoints_parser.add_argument("key", help="Checkpoint key")

    incomplete_parser = subparsers.add_parser(
        "incomplete", help="List operations left unfinished"
    )
    incomplete_parser.add_argument("bucket_name", help="S3 bucket name")

    verify_parser = subparsers.add_parser("verify", help="Verify checkpoint checksums")
    verify_parser.add_argument("bucket_name", help="S3 bucket name")
    verify_parser.add_argument(
        "--detailed", action="store_true", help="Show detailed report (JSON)"
    )

    for sub in (checkpoints_parser, incomplete_parser, verify_parser):
        sub.add_argument(
            "--path",
            default=DEFAULT_SNAPSHOT_PATH,
            help=f"Snapshot object path (default: {DEFAULT_SNAPSHOT_PATH})",
        )

    args = parser.parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    # Dispatch to command handler
    if args.command == "checkpoints":
        exit_code = asyncio.run(cmd_checkpoints(args.bucket_name, args.key, args.path))
    elif args.command == "incomplete":
        exit_code = asyncio.run(cmd_incomplete(args.bucket_name, args.path))
    elif args.command == "verify":
        exit_code = asyncio.run(cmd_verify(args.bucket_name, args.path, args.detailed))
    else:
        parser.print_help()
        sys.exit(2)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
