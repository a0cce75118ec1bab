#!/usr/bin/env python3
"""
Store an export destination for a user.

Credentials are encrypted with ENCRYPTION_KEY before they are written.

Usage:
    python scripts/configure_export.py linear <OWNER_USER_ID> --team-id TEAM --api-key KEY
    python scripts/configure_export.py airtable <OWNER_USER_ID> --base-id appXXX [--table Insights] --api-key KEY
    python scripts/configure_export.py webhook <OWNER_USER_ID> --url https://... [--secret S]
"""
import argparse
import asyncio
import sys
from pathlib import Path

from dotenv import load_dotenv

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from models.export_models import AirtableTarget, LinearTarget, WebhookTarget
from services.database import Database
from services.export_service import ExportService
from utils.encryption import mask_secret

load_dotenv()


def parse_args():
    parser = argparse.ArgumentParser(description="Configure an insight export destination")
    parser.add_argument("provider", choices=["linear", "airtable", "webhook"])
    parser.add_argument("owner_user_id")
    parser.add_argument("--team-id")
    parser.add_argument("--base-id")
    parser.add_argument("--table", default="Insights")
    parser.add_argument("--url")
    parser.add_argument("--api-key")
    parser.add_argument("--secret")
    parser.add_argument("--min-confidence", type=float, default=0.7)
    return parser.parse_args()


def build_target(args):
    if args.provider == "linear":
        return LinearTarget(team_id=args.team_id), {"api_key": args.api_key}
    if args.provider == "airtable":
        return AirtableTarget(base_id=args.base_id, table_name=args.table), {"api_key": args.api_key}
    return WebhookTarget(url=args.url), ({"secret": args.secret} if args.secret else {})


async def main():
    args = parse_args()
    target, credentials = build_target(args)

    db = Database()
    try:
        config = await ExportService(db).upsert_export_config(
            args.owner_user_id,
            target,
            credentials=credentials,
            min_confidence=args.min_confidence,
        )
    finally:
        await db.dispose()

    masked = {k: mask_secret(v) for k, v in config.credentials.items() if v}
    print(f"Saved {config.provider.value} export for {config.owner_user_id}: {config.target.model_dump()}")
    print(f"Credentials: {masked}")


if __name__ == "__main__":
    asyncio.run(main())
