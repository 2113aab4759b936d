#!/usr/bin/env python3
"""Script to import a property catalogue and agent settings into a tenant."""

import argparse
import asyncio
import json
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from pydantic import ValidationError

from src.api.dependencies import get_storage
from src.core.exceptions import DuplicateDocumentError
from src.models import Property, TenantConfig
from src.storage.base import StorageBackend


async def import_properties(
    file_path: Path,
    tenant_id: str,
    storage: StorageBackend,
    replace: bool = False,
) -> int:
    """Import properties from a JSON file.

    Expected format:
    [
        {"id": "...", "title": "...", "city": "...", "basePrice": 250, ...},
        ...
    ]
    """
    print(f"Processing properties: {file_path}")

    with open(file_path, 'r', encoding='utf-8') as f:
        records = json.load(f)

    imported = 0
    for i, record in enumerate(records):
        try:
            prop = Property.model_validate({**record, "tenantId": tenant_id})
        except ValidationError as e:
            print(f"  Skipping record {i}: {e.error_count()} validation error(s)")
            continue

        doc = prop.model_dump()
        try:
            await storage.create(tenant_id, "properties", doc, doc_id=prop.id)
        except DuplicateDocumentError:
            if not replace:
                print(f"  Skipping existing property: {prop.id}")
                continue
            await storage.update(tenant_id, "properties", prop.id, doc)
        imported += 1

    print(f"  Imported {imported} properties")
    return imported


async def import_settings(file_path: Path, tenant_id: str, storage: StorageBackend) -> None:
    """Write the tenant's agent settings document."""
    print(f"Processing settings: {file_path}")

    with open(file_path, 'r', encoding='utf-8') as f:
        config = TenantConfig.model_validate(json.load(f))

    doc = config.model_dump()
    existing = await storage.get(tenant_id, "settings", "agent")
    if existing is None:
        await storage.create(tenant_id, "settings", doc, doc_id="agent")
    else:
        await storage.update(tenant_id, "settings", "agent", doc)

    print(f"  Agent settings saved ({config.agent_name}, {config.locale})")


async def main():
    parser = argparse.ArgumentParser(description="Import a property catalogue into a tenant")
    parser.add_argument("tenant_id", help="Tenant ID")
    parser.add_argument("path", help="Properties JSON file")
    parser.add_argument("--settings", help="Agent settings JSON file")
    parser.add_argument("--replace", action="store_true", help="Overwrite properties that already exist")

    args = parser.parse_args()

    path = Path(args.path)

    if not path.exists():
        print(f"Error: Path does not exist: {path}")
        sys.exit(1)

    storage = get_storage()

    if not await storage.health_check():
        print("Error: Storage backend is not reachable")
        sys.exit(1)

    if args.settings:
        await import_settings(Path(args.settings), args.tenant_id, storage)

    total = await import_properties(path, args.tenant_id, storage, replace=args.replace)

    print(f"\nTotal properties imported: {total}")


if __name__ == "__main__":
    asyncio.run(main())
