"""CLI to measure the reachable size of an identifier without serving traffic."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

import httpx

from ..admission.resolver import GraphSizeResolver
from ..common.observability import configure_logging
from ..common.settings import MEBIBYTE
from ..graph.base import DataSourceUnavailable
from ..graph.kubo import KuboGraphSource


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Resolve the total size of a content graph")
    parser.add_argument("cid", help="Root identifier to measure")
    parser.add_argument(
        "--api", default="http://127.0.0.1:5001", help="Kubo RPC API base URL (default: http://127.0.0.1:5001)"
    )
    parser.add_argument("--max-size-mb", type=int, default=None, help="Report the verdict against this quota")
    parser.add_argument("--timeout", type=float, default=30.0, help="Traversal deadline in seconds (default: 30)")
    parser.add_argument(
        "--lookup-error-policy",
        default="fail",
        choices=["fail", "skip"],
        help="Abort on a failed lookup or count the branch as zero bytes",
    )
    parser.add_argument("--stat", action="store_true", help="Also report the stored size of the root block")
    parser.add_argument("--json", action="store_true", help="Output JSON instead of plain text")
    return parser.parse_args(argv)


async def inspect(args: argparse.Namespace) -> dict[str, object]:
    async with httpx.AsyncClient(base_url=args.api, timeout=10.0) as client:
        source = KuboGraphSource(client)
        resolver = GraphSizeResolver(
            source,
            timeout_seconds=args.timeout or None,
            lookup_error_policy=args.lookup_error_policy,
        )
        result = await resolver.resolve(args.cid)
        report: dict[str, object] = {
            "cid": args.cid,
            "visited": len(result.visited),
            "total_bytes": result.total_size,
        }
        if args.stat:
            report["root_block_bytes"] = await source.block_stat(args.cid)
    if args.max_size_mb is not None:
        quota = args.max_size_mb * MEBIBYTE
        report["quota_bytes"] = quota
        report["verdict"] = "allow" if result.total_size <= quota else "deny"
    return report


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging("sizegate.inspect", "WARNING")
    try:
        report = asyncio.run(inspect(args))
    except DataSourceUnavailable as exc:
        print(f"Lookup failed for {exc.identifier}: {exc.reason}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(report, indent=2))
    else:
        print(f"CID: {report['cid']}")
        print(f"Visited blocks: {report['visited']}")
        print(f"Total bytes: {report['total_bytes']}")
        if "root_block_bytes" in report:
            print(f"Root block bytes: {report['root_block_bytes']}")
        if "verdict" in report:
            print(f"Quota bytes: {report['quota_bytes']}")
            print(f"Verdict: {report['verdict']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
