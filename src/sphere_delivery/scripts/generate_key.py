# src/sphere_delivery/scripts/generate_key.py
"""Create (or show) the signing keypair of a local actor."""

from __future__ import annotations

import argparse
import sys

from sqlalchemy.exc import SQLAlchemyError

from sphere_delivery.db.session import SessionLocal
from sphere_delivery.services.keys import KeyStore


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Ensure an actor has a signing keypair")
    parser.add_argument("actor_uri", help="URI of the local actor, e.g. https://example.com/users/alice")
    parser.add_argument("--key-size", type=int, default=None, help="RSA modulus size in bits")
    args = parser.parse_args(argv)

    try:
        pair = KeyStore(SessionLocal, key_size=args.key_size).ensure_key_pair(args.actor_uri)
    except SQLAlchemyError as exc:
        print(f"[generate_key] ERROR: {exc}", file=sys.stderr)
        sys.exit(1)

    print(f"[generate_key] keyId: {pair.key_id}")
    print(pair.public_key_pem, end="")


if __name__ == "__main__":
    main()
