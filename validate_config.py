#!/usr/bin/env python3
"""
Check that the Entra ID sync configuration is complete
"""

import os
from typing import List
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

REQUIRED_VARS = [
    'AZURE_TENANT_ID',
    'AZURE_CLIENT_ID',
]


def missing_config() -> List[str]:
    """Return the required configuration variables that are not set."""
    return [var for var in REQUIRED_VARS if not os.getenv(var)]


def mask(value: str) -> str:
    if not value:
        return "(not set)"
    if len(value) <= 4:
        return "****"
    return value[:2] + "*" * (len(value) - 4) + value[-2:]


def validate_config():
    """Validate that all required configuration is set"""
    missing = missing_config()

    if missing:
        print("❌ Missing required configuration variables:")
        for var in missing:
            print(f"   - {var}")
        return False

    print("✅ All required configuration variables are set")
    return True


def display_config():
    """Display current configuration (masking sensitive values)"""
    client_secret = os.getenv('AZURE_CLIENT_SECRET', '')
    print("\n📋 Current Configuration:")
    print(f"   Tenant ID: {os.getenv('AZURE_TENANT_ID')}")
    print(f"   Client ID: {os.getenv('AZURE_CLIENT_ID')}")
    print(f"   Client Secret: {mask(client_secret)}")
    print(f"   Auth Flow: {'client credentials' if client_secret else 'device code'}")
    print(f"   Graph API URL: {os.getenv('GRAPH_API_URL', 'https://graph.microsoft.com/v1.0')}")
    print(f"   Graph Scopes: {os.getenv('GRAPH_SCOPES', '(default)')}")
    print(f"   Dry Run Mode: {os.getenv('SYNC_DRY_RUN', 'false')}")
    print()


if __name__ == "__main__":
    print("🔍 Entra ID Membership Sync - Configuration Validator\n")

    if validate_config():
        display_config()
        print("✅ Configuration is valid. You can now run:")
        print("   python sync.py SOURCE TARGET --dry-run")
    else:
        print("\n❌ Please update your .env file with the missing configuration")
        print("   See .env.example for reference")
