from __future__ import annotations

import argparse
from datetime import datetime

from salon import config
from salon.auth_models import UserRole
from salon.auth_service import list_customers_flat, set_role
from salon.demo_data import main as generate_demo_data
from salon.models import AppointmentStatus
from salon.notifications import mark_sent, pending_notifications
from salon.risk import risk_statistics, update_all_customer_risks
from salon.scheduling import to_local, to_utc
from salon.seed import seed_base
from salon.services import (
    book_appointment,
    create_customer,
    init_db,
    list_employees_flat,
    list_services_flat,
    update_appointment_status,
)
from salon.waitlist import cleanup_expired_entries


def cmd_init(args: argparse.Namespace) -> None:
    init_db()
    seed_base()
    print("Database initialised and seeded.")


def cmd_list(args: argparse.Namespace) -> None:
    if args.entity == "services":
        for x in list_services_flat():
            print(f"{x['id']} | {x['title']} ({x['duration']} min) | {x['price']:.2f}")
    elif args.entity == "employees":
        for e in list_employees_flat():
            print(f"{e['id']} | {e['name']} | {e['email'] or '-'}")
    elif args.entity == "customers":
        for c in list_customers_flat():
            print(f"{c['id']} | {c['name']} | {c['email']}")


def cmd_add_customer(args: argparse.Namespace) -> None:
    cid = create_customer(args.name, args.email, args.password)
    print(f"Customer created: {cid}")


def cmd_book(args: argparse.Namespace) -> None:
    start = to_utc(datetime.fromisoformat(args.start), config.TIMEZONE)  # local time, e.g. 2026-01-14T10:30
    outcome = book_appointment(
        client_id=args.client_id,
        service_id=args.service_id,
        start=start,
        employee_id=args.employee_id,
        addon_ids=args.addon or (),
        notes=args.notes,
        join_waitlist_if_full=not args.no_waitlist,
    )
    print(outcome.message)
    if outcome.appointment_id:
        print(f"Appointment ID: {outcome.appointment_id} ({outcome.status})")
    if outcome.waitlist_entry_id:
        print(f"Waitlist entry: {outcome.waitlist_entry_id} (position {outcome.waitlist_position})")
    if outcome.deposit_required:
        print("A deposit is required for this booking.")


def cmd_cancel(args: argparse.Namespace) -> None:
    data = update_appointment_status(
        args.appointment_id,
        AppointmentStatus.CANCELLED,
        actor_id="cli",
        reason=args.reason,
    )
    print(f"Cancelled: {data['id']} ({data['start']})")


def cmd_notifications(args: argparse.Namespace) -> None:
    """
    Stands in for an external delivery system:
    - reads pending notifications
    - prints them
    - marks them as sent
    """
    pending = pending_notifications(limit=args.limit)
    if not pending:
        print("No pending notifications.")
        return

    for n in pending:
        created = to_local(n.created_at, config.TIMEZONE).isoformat()
        print(f"[{n.id}] {n.type.value} | {created} | {n.message}")
        if args.mark_sent:
            mark_sent(n.id)

    if args.mark_sent:
        print("Notifications marked as sent.")


def cmd_waitlist_cleanup(args: argparse.Namespace) -> None:
    print(f"Expired waitlist entries: {cleanup_expired_entries()}")


def cmd_risk_refresh(args: argparse.Namespace) -> None:
    print(f"Risk profiles updated: {update_all_customer_risks()}")


def cmd_risk_stats(args: argparse.Namespace) -> None:
    for level, count in risk_statistics().items():
        print(f"{level:>10}: {count}")


def cmd_set_admin(args: argparse.Namespace) -> None:
    ok = set_role(args.email, UserRole(args.role))
    print("Role updated." if ok else "User not found.")


def cmd_demo_data(args: argparse.Namespace) -> None:
    stats = generate_demo_data(reset=not args.keep, seed=args.seed)
    print(
        f"OK: {stats['customers']} customers, {stats['appointments']} appointments, "
        f"{stats['risk_profiles']} risk profiles."
    )


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="salon_cli", description="Salon booking CLI (stands in for external systems)")
    p.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING...")
    sub = p.add_subparsers(required=True)

    p_init = sub.add_parser("init", help="Create DB and load seed")
    p_init.set_defaults(func=cmd_init)

    p_list = sub.add_parser("list", help="List entities")
    p_list.add_argument("entity", choices=["services", "employees", "customers"])
    p_list.set_defaults(func=cmd_list)

    p_addc = sub.add_parser("add-customer", help="Create a customer")
    p_addc.add_argument("--name", required=True)
    p_addc.add_argument("--email", required=True)
    p_addc.add_argument("--password", default=None)
    p_addc.set_defaults(func=cmd_add_customer)

    p_book = sub.add_parser("book", help="Book an appointment")
    p_book.add_argument("--client-id", required=True)
    p_book.add_argument("--service-id", required=True)
    p_book.add_argument("--employee-id", default=None, help="Omit to let the workload balancer choose")
    p_book.add_argument("--start", required=True, help="Local ISO datetime, e.g. 2026-01-14T10:30")
    p_book.add_argument("--addon", action="append", help="Addon id (repeatable)")
    p_book.add_argument("--notes", default=None)
    p_book.add_argument("--no-waitlist", action="store_true", help="If the slot is taken, do NOT join the waitlist")
    p_book.set_defaults(func=cmd_book)

    p_cancel = sub.add_parser("cancel", help="Cancel an appointment (as admin)")
    p_cancel.add_argument("--appointment-id", required=True)
    p_cancel.add_argument("--reason", default=None)
    p_cancel.set_defaults(func=cmd_cancel)

    p_not = sub.add_parser("notifications", help="Read and deliver pending notifications (simulated)")
    p_not.add_argument("--limit", type=int, default=50)
    p_not.add_argument("--mark-sent", action="store_true", help="Mark as sent after printing")
    p_not.set_defaults(func=cmd_notifications)

    p_wl = sub.add_parser("waitlist-cleanup", help="Expire stale waitlist entries")
    p_wl.set_defaults(func=cmd_waitlist_cleanup)

    p_rr = sub.add_parser("risk-refresh", help="Recompute the risk profile of every customer")
    p_rr.set_defaults(func=cmd_risk_refresh)

    p_rs = sub.add_parser("risk-stats", help="Customers by risk level")
    p_rs.set_defaults(func=cmd_risk_stats)

    p_admin = sub.add_parser("set-admin", help="Change the role of a user")
    p_admin.add_argument("--email", required=True)
    p_admin.add_argument("--role", choices=[r.value for r in UserRole], default=UserRole.ADMIN.value)
    p_admin.set_defaults(func=cmd_set_admin)

    p_demo = sub.add_parser("demo-data", help="Populate 90 days of realistic demo data")
    p_demo.add_argument("--keep", action="store_true", help="Do not delete existing bookings first")
    p_demo.add_argument("--seed", type=int, default=42)
    p_demo.set_defaults(func=cmd_demo_data)

    return p


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    config.configure_logging(args.log_level)
    init_db()  # ensure tables
    args.func(args)


if __name__ == "__main__":
    main()
