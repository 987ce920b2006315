"""
Add booking integrity constraints to an existing database

Migration to add:
- appointment_slots.disabled (admin switch-off, survives seat releases)
- unique index on payments.transaction_id (payment idempotency)
- unique index on appointment_slots (date, start_time)

Tables created by the application already have these; this brings older
databases up to date. Refuses to add a unique index while duplicates exist.

Run with: python migrations/add_booking_integrity_constraints.py
"""

import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import inspect, text

from app.database import engine


def find_duplicates(conn, table: str, columns: str) -> list:
    result = conn.execute(
        text(f"SELECT {columns}, COUNT(*) FROM {table} GROUP BY {columns} HAVING COUNT(*) > 1")
    )
    return list(result)


def add_unique_index(conn, existing_indexes: set, table: str, name: str, columns: str) -> bool:
    if name in existing_indexes:
        print(f"ℹ️  {name} already exists")
        return True

    duplicates = find_duplicates(conn, table, columns)
    if duplicates:
        print(f"❌ Cannot add {name}: {len(duplicates)} duplicated value(s) in {table}({columns})")
        for row in duplicates[:10]:
            print(f"   {tuple(row)}")
        return False

    conn.execute(text(f"CREATE UNIQUE INDEX {name} ON {table} ({columns})"))
    print(f"✅ Added {name}")
    return True


def upgrade() -> bool:
    """Add booking integrity constraints"""
    inspector = inspect(engine)
    tables = set(inspector.get_table_names())
    ok = True

    with engine.begin() as conn:
        if "appointment_slots" in tables:
            slot_columns = {c["name"] for c in inspector.get_columns("appointment_slots")}
            if "disabled" not in slot_columns:
                conn.execute(
                    text("ALTER TABLE appointment_slots ADD COLUMN disabled BOOLEAN NOT NULL DEFAULT FALSE")
                )
                print("✅ Added appointment_slots.disabled column")
            else:
                print("ℹ️  appointment_slots.disabled column already exists")

            slot_indexes = {i["name"] for i in inspector.get_indexes("appointment_slots")}
            slot_indexes |= {u["name"] for u in inspector.get_unique_constraints("appointment_slots")}
            ok &= add_unique_index(
                conn, slot_indexes, "appointment_slots", "uq_appointment_slots_date_start_time", "date, start_time"
            )

        if "payments" in tables:
            payment_indexes = {i["name"] for i in inspector.get_indexes("payments")}
            payment_indexes |= {u["name"] for u in inspector.get_unique_constraints("payments")}
            ok &= add_unique_index(conn, payment_indexes, "payments", "uq_payments_transaction_id", "transaction_id")

    return ok


if __name__ == "__main__":
    print("🔄 Running migration: add booking integrity constraints")
    if upgrade():
        print("✅ Migration completed successfully!")
    else:
        print("❌ Migration incomplete: resolve the duplicates above and run it again")
        sys.exit(1)
