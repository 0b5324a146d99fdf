from __future__ import annotations

import argparse
import json
from collections.abc import Sequence
from dataclasses import asdict

from scope_engine.domain.errors import EngineError
from scope_engine.infra.logging import configure_logging
from scope_engine.services.hierarchy_service import HierarchyService


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Recompute materialized hierarchy paths for one tenant.",
    )
    parser.add_argument("--tenant-id", required=True)
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="report rows that would change without writing",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    configure_logging()
    service = HierarchyService()
    try:
        result = service.rebuild_all_hierarchy_paths(args.tenant_id, dry_run=args.dry_run)
    except EngineError as exc:
        print(json.dumps(exc.to_detail()))
        return 1

    print(json.dumps(asdict(result), sort_keys=True))
    return 2 if result.orphans else 0


if __name__ == "__main__":
    raise SystemExit(main())
