#!/usr/bin/env python3
"""
Mint a service-to-service token signed with the configured secret.

Usage:
    python scripts/mint_token.py --subject reporting-job --audience billing-api \
        --scope users:read --scope users:write

Reads SECRET_KEY / TOKEN_ISSUER from the environment or .env unless overridden.
"""

import argparse
import json
import sys
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from stepgate.config import get_settings
from stepgate.errors import StepUpError
from stepgate.utils.claims import build_service_claims
from stepgate.utils.tokens import current_timestamp, decode_and_verify, encode, load_secret


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--subject", required=True, help="Calling service identifier")
    parser.add_argument("--audience", required=True, help="API the token is meant for")
    parser.add_argument(
        "--scope",
        action="append",
        dest="scopes",
        required=True,
        help="Granted scope, may be repeated",
    )
    parser.add_argument("--ttl", type=int, default=None, help="Lifetime in seconds")
    parser.add_argument("--issuer", default=None, help="Override TOKEN_ISSUER")
    parser.add_argument(
        "--secret", default=None, help="Override SECRET_KEY (avoid: ends up in shell history)"
    )
    parser.add_argument("--secret-base64", action="store_true", help="--secret is base64")
    parser.add_argument("--decode", action="store_true", help="Also print the verified claims")
    return parser.parse_args(argv)


def mint(args: argparse.Namespace) -> tuple[str, dict]:
    settings = get_settings()
    secret = (
        load_secret(args.secret, args.secret_base64) if args.secret else settings.get_secret()
    )
    now = current_timestamp()

    claims = build_service_claims(
        subject=args.subject,
        audience=args.audience,
        issuer=args.issuer or settings.token_issuer,
        scopes=args.scopes,
        ttl_seconds=args.ttl if args.ttl is not None else settings.service_token_ttl_seconds,
        now=now,
    )
    token = encode(claims, secret)
    verified = decode_and_verify(token, secret, now, audience=args.audience)
    return token, verified.to_payload()


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        token, claims = mint(args)
    except (StepUpError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    print(token)
    if args.decode:
        print(json.dumps(claims, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
