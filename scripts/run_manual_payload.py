#!/usr/bin/env python3
"""
Manual E2E Test Script

Reads a transcript file, pushes it to POST /webhooks/transcript, then polls
GET /transcripts/{id} until analysis finishes and prints the insights.

Usage:
    python scripts/run_manual_payload.py <BASE_URL> <TRANSCRIPT_FILE> <OWNER_USER_ID>

Example:
    python scripts/run_manual_payload.py http://localhost:8000 samples/call.txt U123
"""

import json
import os
import sys
import time
from datetime import datetime, timezone
from pathlib import Path

import httpx
from dotenv import load_dotenv

load_dotenv()

POLL_INTERVAL_SECONDS = 3
POLL_TIMEOUT_SECONDS = 300
FINISHED = {"completed", "failed"}


def log(message: str):
    """Log with timestamp."""
    timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    print(f"[{timestamp}] {message}")


def load_transcript(path: Path) -> str:
    if not path.exists():
        print(f"ERROR: Transcript file not found: {path}")
        sys.exit(1)
    return path.read_text(encoding="utf-8")


def push_transcript(client: httpx.Client, base_url: str, content: str, owner_user_id: str) -> dict:
    headers = {}
    secret = os.getenv("INBOUND_WEBHOOK_SECRET")
    if secret:
        headers["X-Webhook-Secret"] = secret

    response = client.post(
        f"{base_url}/webhooks/transcript",
        json={"content": content, "ownerUserId": owner_user_id, "source": "manual"},
        headers=headers,
    )
    if response.status_code != 202:
        print(f"ERROR: Webhook rejected with status {response.status_code}")
        print(f"Response: {response.text}")
        sys.exit(1)
    return response.json()


def wait_for_analysis(client: httpx.Client, base_url: str, transcript_id: str) -> dict:
    deadline = time.monotonic() + POLL_TIMEOUT_SECONDS
    last_status = None

    while time.monotonic() < deadline:
        detail = client.get(f"{base_url}/transcripts/{transcript_id}").json()
        if detail["status"] != last_status:
            log(f"Status: {detail['status']}")
            last_status = detail["status"]
        if detail["status"] in FINISHED:
            return detail
        time.sleep(POLL_INTERVAL_SECONDS)

    print(f"ERROR: Analysis did not finish within {POLL_TIMEOUT_SECONDS} seconds")
    sys.exit(1)


def run_e2e_test(base_url: str, transcript_file: Path, owner_user_id: str):
    print("=" * 60)
    print("MANUAL E2E TEST - Inbound Webhook")
    print("=" * 60)
    print(f"Timestamp: {datetime.now(timezone.utc).isoformat()}")
    print(f"Target URL: {base_url}")
    print()

    content = load_transcript(transcript_file)
    log(f"Loaded transcript: {len(content)} characters")

    with httpx.Client(timeout=30.0) as client:
        accepted = push_transcript(client, base_url, content, owner_user_id)
        transcript_id = accepted["transcriptId"]
        log(f"Accepted: transcript_id={transcript_id}, message={accepted['message']}")

        detail = wait_for_analysis(client, base_url, transcript_id)

    print()
    print("=" * 60)
    print(f"Summary: {detail.get('summary')}")
    print(f"Context: {detail.get('context')}")
    print("=" * 60)
    for insight in detail.get("insights", []):
        print(f"  [{insight['severity']:>6}] {insight['type']}: {insight['title']} ({insight['confidence']:.2f})")
    print()
    print("ACTIVITY TRAIL:")
    print("-" * 60)
    print(json.dumps([a["activityType"] for a in detail.get("activities", [])], indent=2))

    return detail["status"] == "completed"


if __name__ == "__main__":
    if len(sys.argv) < 4:
        print("Usage: python scripts/run_manual_payload.py <BASE_URL> <TRANSCRIPT_FILE> <OWNER_USER_ID>")
        sys.exit(1)

    ok = run_e2e_test(sys.argv[1].rstrip("/"), Path(sys.argv[2]), sys.argv[3])
    print("=" * 60)
    print("TEST COMPLETED SUCCESSFULLY" if ok else "TEST FAILED")
    print("=" * 60)
    if not ok:
        sys.exit(1)
