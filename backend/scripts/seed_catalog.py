#!/usr/bin/env python3
"""
Reference Data Seed Script
Creates the tables and seeds the distress-signal catalog and system
defaults. Optionally creates a demo account.

Usage:
    python -m scripts.seed_catalog [account_name] [weekly_capacity]

Example:
    python -m scripts.seed_catalog "Acme Home Buyers" 100
"""
import sys
import os
from uuid import uuid4

# Add the parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.orm import Session
from app.database import SessionLocal, init_db
from app.models.db_models import AccountDB, AccountSettingsDB, AccountStatus
from app.services.allocation import seed_default_signals, seed_system_defaults


def seed(account_name: str = None, weekly_capacity: int = 100) -> bool:
    """Seed reference data and, if requested, one account."""
    # Ensure tables exist
    init_db()

    db: Session = SessionLocal()
    try:
        signals = seed_default_signals(db)
        defaults = seed_system_defaults(db)
        print(f"Seeded {signals} signal(s) and {defaults} system default(s).")

        if account_name:
            existing = db.query(AccountDB).filter(AccountDB.name == account_name).first()
            if existing:
                print(f"Account '{account_name}' already exists: {existing.id}")
            else:
                account = AccountDB(
                    id=str(uuid4()),
                    name=account_name,
                    status=AccountStatus.ACTIVE,
                    weekly_capacity=weekly_capacity,
                )
                account.settings = AccountSettingsDB(account_id=account.id)
                db.add(account)
                print(f"Account created successfully!")
                print(f"  Name: {account_name}")
                print(f"  ID: {account.id}")
                print(f"  Weekly capacity: {weekly_capacity}")

        db.commit()
        return True

    except Exception as e:
        print(f"Error seeding reference data: {e}")
        db.rollback()
        return False
    finally:
        db.close()


def main():
    if len(sys.argv) > 3:
        print(__doc__)
        sys.exit(1)

    account_name = sys.argv[1] if len(sys.argv) > 1 else None
    weekly_capacity = 100
    if len(sys.argv) == 3:
        try:
            weekly_capacity = int(sys.argv[2])
        except ValueError:
            print("Error: weekly_capacity must be an integer.")
            sys.exit(1)
        if weekly_capacity <= 0:
            print("Error: weekly_capacity must be positive.")
            sys.exit(1)

    success = seed(account_name, weekly_capacity)
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
