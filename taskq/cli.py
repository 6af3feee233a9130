"""taskq CLI"""

import argparse
import asyncio
import json
import sys

from common.config import load_config
from database import get_db
from database.registry import DatabaseRegistry
from store import JobStatus, JobStore, StoreError
from taskq import __version__


def _print_json(data) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2, default=str))


def _parse_payload(raw: str | None):
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise SystemExit(f"Error: --payload is not valid JSON: {e}")


async def _run(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    await DatabaseRegistry.init_from_config(config, [args.database])
    try:
        store = JobStore.from_config(get_db(args.database), config)

        if args.command == "submit":
            job_id = await store.enqueue(
                args.job_type,
                _parse_payload(args.payload),
                max_attempts=args.max_attempts,
                job_id=args.job_id,
            )
            print(job_id)

        elif args.command == "status":
            record = await store.get(args.job_id)
            _print_json(record.model_dump(mode="json"))

        elif args.command == "list":
            status = JobStatus(args.status) if args.status else None
            records = await store.list_jobs(status=status, job_type=args.job_type, limit=args.limit)
            for record in records:
                print(
                    f"{record.job_id}  {record.job_type:<20} {record.status.value:<10} "
                    f"attempts={record.attempts}/{record.max_attempts}  created={record.created_at.isoformat()}"
                )

        elif args.command == "stats":
            _print_json(await store.count_by_status())

        return 0

    except StoreError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await DatabaseRegistry.close_all()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="taskq",
        description="taskq - SQLite 기반 비동기 잡 큐"
    )
    parser.add_argument("-c", "--config", default=None, help="Config directory (default: ./config)")
    parser.add_argument("-d", "--database", default="default", help="Database name in database.yaml")
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    submit_parser = subparsers.add_parser("submit", help="Submit a new job")
    submit_parser.add_argument("job_type", help="Job type (handler name)")
    submit_parser.add_argument("-p", "--payload", default=None, help="JSON payload")
    submit_parser.add_argument("-m", "--max-attempts", type=int, default=None, help="Max attempts")
    submit_parser.add_argument("--job-id", default=None, help="Client supplied job id")

    status_parser = subparsers.add_parser("status", help="Show a job")
    status_parser.add_argument("job_id", help="Job id")

    list_parser = subparsers.add_parser("list", help="List recent jobs")
    list_parser.add_argument("-s", "--status", choices=[s.value for s in JobStatus], default=None)
    list_parser.add_argument("-t", "--job-type", default=None)
    list_parser.add_argument("-n", "--limit", type=int, default=20)

    subparsers.add_parser("stats", help="Count jobs by status")

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    sys.exit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
