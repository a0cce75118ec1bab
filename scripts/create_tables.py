#!/usr/bin/env python3
"""
Create the database tables for DATABASE_URL.

Usage:
    python scripts/create_tables.py
"""
import asyncio
import sys
from pathlib import Path

from dotenv import load_dotenv

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from services.database import Database

load_dotenv()


async def main():
    db = Database()
    try:
        await db.create_all()
    finally:
        await db.dispose()
    print("Tables created: transcripts, transcript_activities, insights, export_configs")


if __name__ == "__main__":
    asyncio.run(main())
