"""
CLI utility to generate JWT tokens for testing the MCP server.

In production, tokens are issued by the identity server. This script mints
look-alike tokens with configurable claims so the server's scope check can be
exercised locally. The server reads the claims without verifying the
signature, so any secret works.

Usage examples:

    # Token carrying the Submission API scope
    python -m scripts.generate_token --sub alice --scope openid submission-api

    # Token with custom expiration (2 hours)
    python -m scripts.generate_token --sub ci-agent --scope submission-api --exp-hours 2

    # Expired token (for testing rejection)
    python -m scripts.generate_token --sub alice --scope submission-api --exp-hours -1

The generated token can be used with curl:

    curl -X POST http://localhost:7072/mcp \\
      -H "Content-Type: application/json" \\
      -H "Authorization: Bearer <token>" \\
      -d '{"jsonrpc":"2.0","id":1,"method":"initialize",...}'
"""

import argparse
import datetime

import jwt


def generate_token(
    subject: str,
    scopes: list[str],
    secret: str = "dev-secret-change-me",
    algorithm: str = "HS256",
    exp_hours: float = 8.0,
) -> str:
    """
    Generate a signed JWT token with the given claims.

    Args:
        subject: The "sub" claim
        scopes: Scopes, emitted as one space-delimited "scope" claim
        secret: The signing key (not checked by the server)
        algorithm: JWT signing algorithm (default: HS256)
        exp_hours: Hours until expiration (negative = already expired)

    Returns:
        The encoded JWT token string
    """
    now = datetime.datetime.now(datetime.timezone.utc)
    expiration = now + datetime.timedelta(hours=exp_hours)

    payload = {
        "sub": subject,
        "scope": " ".join(scopes),
        "iat": now,
        "exp": expiration,
    }

    return jwt.encode(payload, secret, algorithm=algorithm)


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Generate JWT tokens for the Submissions MCP server.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Submission API access:
    %(prog)s --sub alice --scope submission-api

  Expired token (for testing):
    %(prog)s --sub alice --scope submission-api --exp-hours -1
        """,
    )

    parser.add_argument(
        "--sub",
        required=True,
        help="Subject claim: who/what this token identifies (e.g., 'alice', 'ci-agent')",
    )
    parser.add_argument(
        "--scope",
        nargs="+",
        default=[],
        help="Scopes to grant (e.g., openid submission-api)",
    )
    parser.add_argument(
        "--secret",
        default="dev-secret-change-me",
        help="JWT signing secret",
    )
    parser.add_argument(
        "--algorithm",
        default="HS256",
        help="JWT signing algorithm (default: HS256)",
    )
    parser.add_argument(
        "--exp-hours",
        type=float,
        default=8.0,
        help="Hours until token expires (negative = already expired, default: 8)",
    )

    args = parser.parse_args()

    token = generate_token(
        subject=args.sub,
        scopes=args.scope,
        secret=args.secret,
        algorithm=args.algorithm,
        exp_hours=args.exp_hours,
    )

    exp_time = datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(
        hours=args.exp_hours
    )

    print(f"Subject:    {args.sub}")
    print(f"Scopes:     {' '.join(args.scope)}")
    print(f"Expires:    {exp_time.isoformat()}")
    print()
    print(f"Token: {token}")

    print()
    print("Usage with curl (initialize MCP session):")
    print('  curl -X POST http://localhost:7072/mcp \\')
    print('    -H "Content-Type: application/json" \\')
    print('    -H "Accept: application/json, text/event-stream" \\')
    print(f'    -H "Authorization: Bearer {token}" \\')
    print(
        '    -d \'{"jsonrpc":"2.0","id":1,"method":"initialize",'
        '"params":{"protocolVersion":"2025-03-26","capabilities":{},'
        '"clientInfo":{"name":"test","version":"1.0"}}}\''
    )


if __name__ == "__main__":
    main()
