"""
One-shot sync from the command line.

    python -m sync --all --year 2025
    python -m sync --node N1 --node N2 --descendants
    python -m sync --mb 3 --nex 7
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from core import db
from core.config import configure_logging

from .orchestrator import SyncParams, run_sync


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="python -m sync", description="Run one ManageBac/Nexquare sync and exit")
    p.add_argument("--all", action="store_true", help="Sync every active config")
    p.add_argument("--node", action="append", default=[], help="Node id to sync (repeatable)")
    p.add_argument("--year", default=None, help="Academic year (default: current year)")
    p.add_argument("--mb", action="append", type=int, default=[], help="ManageBac config id (repeatable)")
    p.add_argument("--nex", action="append", type=int, default=[], help="Nexquare config id (repeatable)")
    p.add_argument("--descendants", action="store_true", help="Include descendant nodes")
    return p.parse_args(argv)


def build_params(args: argparse.Namespace) -> SyncParams:
    return SyncParams(
        node_ids=args.node or None,
        academic_year=args.year,
        include_descendants=args.descendants,
        all=args.all,
        triggered_by="cli",
        config_ids_mb=args.mb or None,
        config_ids_nex=args.nex or None,
    )


async def _main(params: SyncParams) -> dict:
    await db.init_pool()
    try:
        return await run_sync(params)
    finally:
        await db.close_pool()


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    args = _parse_args(argv)
    if not (args.all or args.node or args.mb or args.nex):
        print("Nothing to sync: pass --all, --node, --mb or --nex", file=sys.stderr)
        return 2

    result = asyncio.run(_main(build_params(args)))
    print(json.dumps(result, indent=2))
    return 0 if result["status"] == "completed" else 1


if __name__ == "__main__":
    sys.exit(main())
