"""Issue a development credential token, optionally minting a fresh issuer keypair."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from livebid.identity.tokens import issue_token


def generate_keypair(directory: Path) -> Path:
    private_key = Ed25519PrivateKey.generate()
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    directory.mkdir(parents=True, exist_ok=True)
    private_path = directory / "issuer_private.pem"
    private_path.write_bytes(private_pem)
    (directory / "issuer_public.pem").write_bytes(public_pem)
    return private_path


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("identity_id", help="identity id as listed in identities.yaml")
    parser.add_argument("--key", type=Path, help="PEM-encoded ed25519 issuer private key")
    parser.add_argument(
        "--generate-key",
        type=Path,
        metavar="DIR",
        help="write a new issuer keypair into DIR and sign with it",
    )
    args = parser.parse_args(argv)

    if args.generate_key is not None:
        key_path = generate_keypair(args.generate_key)
        print(f"wrote issuer keypair to {args.generate_key}", file=sys.stderr)
    elif args.key is not None:
        key_path = args.key
    else:
        parser.error("one of --key or --generate-key is required")

    print(issue_token(args.identity_id, key_path.read_text()))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
