#!/usr/bin/env python3
"""
Stockroom Database Initialization Script
Creates database tables and, with --seed, an admin user and demo master data
"""
import argparse
import calendar
import logging
import os
from datetime import date

from stockroom.core.database import SessionLocal, init_db
from stockroom.models.auth import User, UserRole
from stockroom.schemas.auth import UserCreate
from stockroom.services.auth_service import AuthService
from stockroom.services.period.period_service import PeriodService
from stockroom.services.stock.stock_master import StockMasterService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DEMO_LOCATIONS = [
    {"code": "MAIN", "name": "Main Kitchen", "type": "KITCHEN"},
    {"code": "CSTORE", "name": "Central Store", "type": "CENTRAL"},
]

DEMO_ITEMS = [
    {"code": "FLOUR", "name": "Plain Flour 25kg", "unit": "KG", "category": "DRY", "reference_price": "1.2000"},
    {"code": "RICE", "name": "Basmati Rice", "unit": "KG", "category": "DRY", "reference_price": "2.1500"},
    {"code": "MILK", "name": "Whole Milk", "unit": "LTR", "category": "DAIRY", "reference_price": "0.9500"},
    {"code": "EGGS", "name": "Free Range Eggs", "unit": "EA", "category": "DAIRY", "reference_price": "0.2500"},
]


def create_admin(db, username: str, password: str) -> User:
    existing = db.query(User).filter(User.username == username).first()
    if existing:
        logger.info(f"Admin user {username} already exists")
        return existing

    user = AuthService(db).create_user(UserCreate(
        username=username,
        email=os.environ.get("STOCKROOM_ADMIN_EMAIL", "admin@example.com"),
        full_name="System Administrator",
        password=password,
        role=UserRole.ADMIN,
    ))
    logger.info(f"Created admin user {username}")
    return user


def seed_demo_data(db, admin: User) -> None:
    master = StockMasterService(db, admin)
    if master.list_locations(include_inactive=True):
        logger.info("Master data already present, skipping demo seed")
        return

    for location in DEMO_LOCATIONS:
        master.create_location(location)
    for item in DEMO_ITEMS:
        master.create_item(item)
    master.create_supplier({"code": "FRESH", "name": "Fresh Foods Ltd", "email": "orders@example.com"})

    start = date.today().replace(day=1)
    end = start.replace(day=calendar.monthrange(start.year, start.month)[1])
    periods = PeriodService(db, admin)
    period = periods.create({
        "name": start.strftime("%B %Y"),
        "start_date": start,
        "end_date": end,
    })
    periods.open(period.id)
    logger.info(f"Demo data created; period {period.name} is open")


def main():
    parser = argparse.ArgumentParser(description="Initialize the Stockroom database")
    parser.add_argument("--seed", action="store_true", help="Create an admin user and demo data")
    parser.add_argument("--admin-username", default="admin")
    parser.add_argument("--admin-password", default=os.environ.get("STOCKROOM_ADMIN_PASSWORD", "changeme123"))
    args = parser.parse_args()

    init_db()
    if not args.seed:
        return

    db = SessionLocal()
    try:
        admin = create_admin(db, args.admin_username, args.admin_password)
        seed_demo_data(db, admin)
    finally:
        db.close()


if __name__ == "__main__":
    main()
