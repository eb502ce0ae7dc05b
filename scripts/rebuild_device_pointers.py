"""
Rebuild the device pointer projection from the status report log.

Pointers are normally advanced on ingest; run this after restoring a
backup, bulk-importing reports or changing the pointer rules.

Typical usage (from this repo root):
  - Every deployment:
      python scripts/rebuild_device_pointers.py
  - One deployment:
      python scripts/rebuild_device_pointers.py --deployment-id <uuid>
"""

from __future__ import annotations

import sys
from pathlib import Path

# Allow running the script from any working directory by ensuring the repo
# root (which contains the `release_engine/` package) is on sys.path.
_REPO_ROOT = str(Path(__file__).resolve().parents[1])
if _REPO_ROOT not in sys.path:
    sys.path.insert(0, _REPO_ROOT)

import argparse
import logging

from release_engine.db import SessionLocal
from release_engine.errors import ReleaseEngineError
from release_engine.logging import configure_logging
from release_engine.services.common import coerce_uuid
from release_engine.services.status_report_service import StatusReportService

logger = logging.getLogger("rebuild_device_pointers")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--deployment-id", help="Only rebuild pointers for this deployment")
    args = parser.parse_args(argv)

    configure_logging()
    db = SessionLocal()
    try:
        deployment_id = coerce_uuid(args.deployment_id)
        count = StatusReportService(db).rebuild_pointers(deployment_id)
    except ReleaseEngineError as exc:
        db.rollback()
        logger.error("Rebuild failed: %s", exc.message)
        return 1
    finally:
        db.close()
    print(f"Rebuilt {count} device pointers")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
