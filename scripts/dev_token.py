#!/usr/bin/env python3
"""
Mint a bearer token for a dev user id:  python scripts/dev_token.py alice
"""
import sys

from ritual_engine.api.auth import create_access_token


def main():
    user_id = sys.argv[1] if len(sys.argv) > 1 else input("User id: ").strip()
    if not user_id:
        print("A user id is required.")
        sys.exit(1)
    print(create_access_token(user_id))


if __name__ == "__main__":
    main()
