#!/usr/bin/env python3
"""ThingsBoard → GCDR Sync CLI.

This module provides a command-line interface for mirroring one ThingsBoard
customer tree (Customer → Assets → Devices) into the GCDR registry.

Architecture:
    - GCDRSyncService wires TBClient, GCDRClient, adapters and use cases
    - BuildSyncPlanUseCase fetches the tree and computes the plan
    - ExecuteSyncPlanUseCase executes it level by level

Environment Variables Required:
    - GCDR_BASE_URL: GCDR registry base URL
    - GCDR_API_KEY: GCDR API key
    - TB_BASE_URL: ThingsBoard base URL
    - TB_TOKEN or TB_USERNAME/TB_PASSWORD: ThingsBoard credentials
    - GCDR_TENANT_ID: optional, read from the customer's gcdrTenantId otherwise

Example Usage:
    $ python main.py --customer-id <tbId> --dry-run      # Show the plan only
    $ python main.py --customer-id <tbId>                # Plan and execute
    $ python main.py --customer-id <tbId> --json         # Machine-readable output

Exit Status:
    0 when no action failed, 1 when any action failed or the sync could not
    complete, 2 on configuration or authentication errors
"""
import argparse
import asyncio
import json
import logging
import signal
import sys
from datetime import datetime, timezone

from dotenv import load_dotenv

from src.gcdr_sync.api.exceptions import AuthenticationError, ConfigurationError, GCDRSyncError
from src.gcdr_sync.config import SyncConfig
from src.gcdr_sync.sync.domain.entities import SyncPlan, SyncResult
from src.gcdr_sync.sync.service import GCDRSyncService

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_CONFIG = 2


def print_plan(plan: SyncPlan) -> None:
    print("\n" + "=" * 60)
    print("SYNC PLAN")
    print("=" * 60)
    print(
        f"  create: {plan.to_create}  update: {plan.to_update}  "
        f"recreate: {plan.to_recreate}  skip: {plan.to_skip}"
    )
    for action in plan.ordered_actions():
        print(f"  {action.type.value:<8} {action.entity_kind.value:<8} {action.tb_name}")


def print_result(result: SyncResult) -> None:
    print("\n" + "=" * 60)
    print("SYNC COMPLETE" if result.success else "SYNC FINISHED WITH FAILURES")
    print("=" * 60)
    print(
        f"  succeeded: {len(result.succeeded)}  failed: {len(result.failed)}  "
        f"skipped: {len(result.skipped)}"
    )
    if result.aborted_reason:
        print(f"  run aborted: {result.aborted_reason}")
    for outcome in result.failed:
        action = outcome.action
        print(f"  FAILED  {action.entity_kind.value:<8} {action.tb_name}: {outcome.error}")
    for outcome in result.warnings:
        action = outcome.action
        print(f"  WARNING {action.entity_kind.value:<8} {action.tb_name}: {outcome.warning}")


def print_progress(current: int, total: int, name: str) -> None:
    print(f"[Sync] {current}/{total} {name}")


async def run_sync(args: argparse.Namespace) -> int:
    """Run one sync and return the process exit status."""
    start_time = datetime.now(timezone.utc)

    try:
        config = SyncConfig.from_env()
    except ConfigurationError as e:
        print(f"[Main] Configuration error: {e.message}", file=sys.stderr)
        return EXIT_CONFIG

    if args.concurrency is not None:
        config.concurrency = args.concurrency
    if args.execution_concurrency is not None:
        config.execution_concurrency = args.execution_concurrency
    if args.detect_unchanged:
        config.detect_unchanged = True
    try:
        config.validate()
    except ConfigurationError as e:
        print(f"[Main] Configuration error: {e.message}", file=sys.stderr)
        return EXIT_CONFIG

    logger.info(f"Starting sync of customer {args.customer_id} with {config!r}")

    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def handle_interrupt() -> None:
        if not cancel_event.is_set():
            print("\n[Main] Interrupted, finishing in-flight requests...", file=sys.stderr)
            cancel_event.set()

    try:
        loop.add_signal_handler(signal.SIGINT, handle_interrupt)
    except NotImplementedError:
        # Not available on Windows event loops; Ctrl-C then raises KeyboardInterrupt
        pass

    on_progress = None if args.json else print_progress
    on_status = None if args.json else (lambda message: print(f"[Plan] {message}"))

    try:
        async with GCDRSyncService(config) as service:
            plan, result = await service.run(
                args.customer_id,
                dry_run=args.dry_run,
                on_progress=on_progress,
                on_status=on_status,
                cancel_event=cancel_event,
            )
    except (ConfigurationError, AuthenticationError) as e:
        print(f"[Main] {e.message}", file=sys.stderr)
        return EXIT_CONFIG
    except GCDRSyncError as e:
        logger.error(f"Sync failed: {e}")
        print(f"[Main] Sync failed: {e.message}", file=sys.stderr)
        return EXIT_FAILURES
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except NotImplementedError:
            pass

    if args.json:
        output = {"plan": plan.to_dict()}
        if result is not None:
            output["result"] = result.to_dict()
        print(json.dumps(output, indent=2))
    else:
        print_plan(plan)
        if result is not None:
            print_result(result)

    duration = (datetime.now(timezone.utc) - start_time).total_seconds()
    logger.info(f"Completed in {duration:.1f} seconds")

    if result is not None and result.failed:
        return EXIT_FAILURES
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Sync a ThingsBoard customer tree into the GCDR registry",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --customer-id <tbId> --dry-run     # Show the plan, change nothing
  python main.py --customer-id <tbId>               # Plan and execute
  python main.py --customer-id <tbId> --json        # JSON plan and result
        """,
    )

    parser.add_argument(
        "--customer-id",
        required=True,
        metavar="TB_ID",
        help="ThingsBoard customer ID to sync",
    )

    run_group = parser.add_argument_group("Run Options")
    run_group.add_argument(
        "--dry-run",
        action="store_true",
        help="Compute and print the plan without executing it",
    )
    run_group.add_argument(
        "--concurrency",
        type=int,
        metavar="N",
        help="Parallel reads while building the plan (default: SYNC_CONCURRENCY or 5)",
    )
    run_group.add_argument(
        "--execution-concurrency",
        type=int,
        metavar="N",
        help="Parallel actions within a level (default: SYNC_EXECUTION_CONCURRENCY or 1)",
    )
    run_group.add_argument(
        "--detect-unchanged",
        action="store_true",
        help="Skip entities whose payload is unchanged since the last sync",
    )

    output_group = parser.add_argument_group("Output Options")
    output_group.add_argument(
        "--json",
        action="store_true",
        help="Print the plan and result as JSON",
    )
    output_group.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    return parser


def main() -> None:
    load_dotenv()
    args = build_parser().parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        stream=sys.stderr,
    )

    sys.exit(asyncio.run(run_sync(args)))


if __name__ == "__main__":
    main()
