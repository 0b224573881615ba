#!/usr/bin/env python3
"""
Initialize the Parley development environment.

This script:
1. Waits for the API to be ready
2. Ensures the default channel exists
3. Registers the dev user
4. Writes an uploader config pointing at the default channel
"""

import os
import sys
import time

import httpx
import yaml

API_BASE_URL = os.environ.get("API_BASE_URL", "http://api:8000")
DEV_IDENTITY = os.environ.get("DEV_IDENTITY", "dev@example.com")
IDENTITY_HEADER = os.environ.get("IDENTITY_HEADER", "X-Auth-Request-Email")
UPLOADER_CONFIG = os.environ.get("UPLOADER_CONFIG", "/config/uploader.yaml")
DOCUMENTS_DIR = os.environ.get("DOCUMENTS_DIR", "/mnt/documents")
MAX_RETRIES = 30
RETRY_DELAY = 2


def wait_for_api() -> bool:
    """Wait for the API to be ready."""
    print(f"Waiting for API at {API_BASE_URL}...")

    for i in range(MAX_RETRIES):
        try:
            response = httpx.get(f"{API_BASE_URL}/health", timeout=5)
            if response.status_code == 200 and response.json().get("status") == "healthy":
                print("API is ready!")
                return True
        except httpx.HTTPError as e:
            print(f"  {e}")

        print(f"  Attempt {i + 1}/{MAX_RETRIES}...")
        time.sleep(RETRY_DELAY)

    print("ERROR: API did not become ready in time")
    return False


def ensure_default_channel(client: httpx.Client) -> dict:
    """Create the default channel, or fetch it if it exists."""
    print("Ensuring default channel...")

    response = client.post(f"{API_BASE_URL}/v0/admin/channels/default")
    response.raise_for_status()
    channel = response.json()
    print(f"  Channel {channel['name']}: {channel['id']}")
    return channel


def register_dev_user(client: httpx.Client) -> dict:
    """Register the dev user (the identity header creates it on first use)."""
    print("Registering dev user...")

    response = client.post(
        f"{API_BASE_URL}/v0/admin/users",
        headers={IDENTITY_HEADER: DEV_IDENTITY},
        json={"name": DEV_IDENTITY},
    )
    response.raise_for_status()
    user = response.json()
    print(f"  User {user['name']}: {user['id']}")
    return user


def write_uploader_config(channel_id: str) -> None:
    config = {
        "api_base_url": API_BASE_URL,
        "identity": DEV_IDENTITY,
        "identity_header": IDENTITY_HEADER,
        "folders": [
            {
                "name": "documents",
                "path": DOCUMENTS_DIR,
                "channel_id": channel_id,
            }
        ],
    }
    try:
        with open(UPLOADER_CONFIG, "w") as f:
            yaml.safe_dump(config, f, sort_keys=False)
        print(f"Uploader config written to {UPLOADER_CONFIG}")
    except OSError as e:
        print(f"Could not write uploader config: {e}")


def main():
    """Main initialization routine."""
    print("=" * 60)
    print("Parley Development Environment Initialization")
    print("=" * 60)
    print()

    # Wait for API
    if not wait_for_api():
        sys.exit(1)

    print()

    with httpx.Client(timeout=30) as client:
        channel = ensure_default_channel(client)
        register_dev_user(client)

    print()
    print("=" * 60)
    print("Initialization Complete!")
    print("=" * 60)
    print()
    print("Default channel id for the uploader:")
    print(f"  {channel['id']}")
    print()

    write_uploader_config(channel["id"])


if __name__ == "__main__":
    main()
