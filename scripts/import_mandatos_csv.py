#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from services.mandato_import import import_brevo_deals_csv, import_mandatos_venta, rows_from_mandatos_venta_csv
from shared.db import SessionLocal, init_db


def main() -> int:
    parser = argparse.ArgumentParser(description="Import mandates from a CSV export")
    parser.add_argument("path", help="CSV file")
    parser.add_argument("--format", choices=["brevo_deals", "mandatos_venta"], default="brevo_deals")
    args = parser.parse_args()

    path = Path(args.path)
    if not path.is_file():
        print(f"File not found: {path}", file=sys.stderr)
        return 1
    text = path.read_text(encoding="utf-8-sig")

    init_db()
    db = SessionLocal()
    try:
        if args.format == "brevo_deals":
            result = import_brevo_deals_csv(db, text)
            print(json.dumps(result["summary"], ensure_ascii=False))
            failed = result["summary"]["error"]
        else:
            result = import_mandatos_venta(db, rows_from_mandatos_venta_csv(text))
            print(json.dumps(result, ensure_ascii=False, indent=2))
            failed = sum(1 for error in result["errores"] if error.startswith("Error"))
    finally:
        db.close()
    return 1 if failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
