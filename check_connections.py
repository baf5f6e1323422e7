#!/usr/bin/env python3
"""
Check that Microsoft Graph is reachable with the configured credentials
"""

import sys
import logging
from dotenv import load_dotenv

from graph_client import ApiError, AuthError, authenticate, find_account, list_group_memberships

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

load_dotenv()


def check_graph_connection(account=None):
    """Authenticate and read from Graph, optionally resolving one account"""
    print("\n🔍 Testing Microsoft Graph Connection...")

    try:
        session = authenticate()
    except AuthError as e:
        print(f"❌ Authentication failed: {e}")
        return False

    try:
        print(f"✅ Authenticated against: {session.api_url}")

        try:
            users = session.request("GET", "/users", params={"$select": "id", "$top": "1"}).json()
            print(f"✅ Read access to users ({len(users.get('value', []))} returned)")
        except ApiError as e:
            print(f"❌ Could not read users: {e}")
            return False

        if account:
            try:
                found = find_account(session, account)
                groups = list_group_memberships(session, found["id"])
                print(f"✅ Resolved {found.get('userPrincipalName') or found['id']}, member of {len(groups)} groups")
                if groups:
                    print("\n   Sample groups:")
                    for group in groups[:5]:
                        print(f"   - {group.get('displayName')}")
            except Exception as e:
                print(f"⚠️  Could not resolve {account}: {e}")

        return True
    finally:
        session.close()


def main():
    """Run the connection check"""
    print("🧪 Connection Check Script")
    print("=" * 60)

    graph_ok = check_graph_connection(sys.argv[1] if len(sys.argv) > 1 else None)

    print("\n" + "=" * 60)
    print("📊 Summary:")
    print(f"   Microsoft Graph: {'✅ PASS' if graph_ok else '❌ FAIL'}")

    if graph_ok:
        print("\n✅ Ready to run sync.py")
        return 0
    print("\n❌ Please check your configuration.")
    return 1


if __name__ == "__main__":
    sys.exit(main())
