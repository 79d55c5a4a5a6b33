#!/usr/bin/env python3
"""Load deterministic sample data for demos and manual testing."""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from impactmatrix.sample_data import load_sample_data
from impactmatrix.server import configure_logging
from impactmatrix.store import db_connect, ensure_bootstrap


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--reset", action="store_true", help="Replace existing sample content")
    args = parser.parse_args()

    configure_logging()
    ensure_bootstrap()
    conn = db_connect()
    try:
        counts = load_sample_data(conn, reset=args.reset)
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
    print("SAMPLE_DATA_OK", counts)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
