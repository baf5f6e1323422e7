#!/usr/bin/env python3
"""
Copy Entra ID group memberships from one account to another

Every existing group membership of the target account is removed first,
then the target is added to every group the source account belongs to.
Groups both accounts share are removed and added back as well.
"""

import sys

from models import Mode
from sync import main as sync_main


def main(argv=None) -> int:
    return sync_main(argv, mode=Mode.REPLACE)


def run():
    sys.exit(main())


if __name__ == "__main__":
    run()
