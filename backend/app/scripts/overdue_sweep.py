from __future__ import annotations

import argparse
from datetime import date

from app.db.session import SessionLocal
from app.services.invoices import mark_overdue_invoices


def parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid date: {value}") from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Mark sent invoices past their due date as overdue.")
    parser.add_argument("--as-of", type=parse_date, default=None, help="Treat this date as today (YYYY-MM-DD).")
    parser.add_argument("--apply", action="store_true", help="Write changes to the database.")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Preview changes without writing (default).",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.as_of is not None and args.as_of > date.today():
        parser.error("--as-of cannot be in the future")
    apply = args.apply and not args.dry_run

    session = SessionLocal()
    try:
        invoice_ids = mark_overdue_invoices(session, today=args.as_of, apply=apply)
        print("Overdue sweep")
        print(f"Invoices {'marked' if apply else 'due to be marked'}: {len(invoice_ids)}")
        for invoice_id in invoice_ids:
            print(f"  {invoice_id}")
        if not apply:
            print("Dry run only. Use --apply to persist changes.")
        return 0
    finally:
        session.close()


if __name__ == "__main__":
    raise SystemExit(main())
