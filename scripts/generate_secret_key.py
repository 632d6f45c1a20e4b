#!/usr/bin/env python3
"""
Generate the key that signs techHelp access and confirmation tokens.
Run this and copy the output to your .env file.
"""

import secrets

if __name__ == "__main__":
    print("=" * 60)
    print("techHelp token signing key")
    print("=" * 60)

    secret_key = secrets.token_hex(32)

    print(f"\nJWT_SECRET_KEY={secret_key}")
    print("\nKeep it stable across restarts: changing it signs everyone out.")
    print("=" * 60)
