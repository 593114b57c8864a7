"""Seed script for store catalog data.

Loads products from a JSON file shaped like ``{"products": [...]}`` into
whichever backend the gateway selects, and can create an admin account.
Products whose id already exists are skipped, so the script can be re-run.

Usage:
    python -m services.store_service.seed_store_data --file database/products.json
    python -m services.store_service.seed_store_data --file products.json \\
        --admin-email admin@example.com --admin-password 'change-me'
"""

import argparse
import asyncio
import json
from pathlib import Path
from typing import Optional

from services.store_service.app.main import Store, create_store
from services.store_service.errors import StoreError, ValidationError
from services.store_service.models import AccountRole


def load_products(path: Path) -> list[dict]:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    products = data.get("products") if isinstance(data, dict) else data
    if not isinstance(products, list):
        raise ValueError(f"{path} does not contain a product list")
    return products


async def seed_products(store: Store, products: list[dict]) -> tuple[int, int]:
    created = skipped = 0
    for raw in products:
        try:
            await store.catalog.create_product(raw)
            created += 1
        except ValidationError as exc:
            print(f"   - Skipping {raw.get('id') or raw.get('name')}: {exc.errors}")
            skipped += 1
    return created, skipped


async def ensure_admin(store: Store, email: str, password: str) -> None:
    existing = await store.accounts.find_by_email(email)
    if existing is not None:
        print(f"Admin account already exists: {existing.email} ({existing.role.value})")
        return
    try:
        account = await store.accounts.create(
            {
                "first_name": "Store",
                "last_name": "Admin",
                "email": email,
                "password": password,
            },
            role=AccountRole.ADMIN,
        )
    except StoreError as exc:
        print(f"Could not create admin account: {exc.message}")
        return
    print(f"Admin account created: {account.email}")


async def seed_store_data(
    products_file: Path,
    admin_email: Optional[str] = None,
    admin_password: Optional[str] = None,
) -> None:
    store = await create_store()
    try:
        print("Seeding store data...")
        print(f"Backend: {store.gateway.connection_info()}")

        created, skipped = await seed_products(store, load_products(products_file))
        if admin_email and admin_password:
            await ensure_admin(store, admin_email, admin_password)

        print("=" * 60)
        print("Store data seeded successfully!")
        print("=" * 60)
        print(f"  Products created: {created}")
        print(f"  Products skipped: {skipped}")
        print(f"  Categories: {len(await store.catalog.list_categories())}")
        print("=" * 60)
    finally:
        await store.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--file", required=True, help="Path to products JSON file")
    parser.add_argument("--admin-email", help="Create an admin account with this email")
    parser.add_argument("--admin-password", help="Password for the admin account")
    args = parser.parse_args()

    asyncio.run(seed_store_data(Path(args.file), args.admin_email, args.admin_password))
