#!/usr/bin/env python3
"""
oauthweb - OAuth 2.0 login for server-rendered web applications.
"""

import argparse
import json
import logging
import sys

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", stream=sys.stderr
)


def show_config() -> None:
    """Print the effective auth configuration (secrets redacted)."""
    from dataclasses import asdict

    from oauthweb.auth.config import load_auth_config

    cfg = load_auth_config()
    data = asdict(cfg)
    for secret in ("oidc_client_secret", "session_secret"):
        if data.get(secret):
            data[secret] = "***"
    data["oauth_enabled"] = cfg.oauth_enabled
    print(json.dumps(data, indent=2, sort_keys=True))


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="OAuth 2.0 web login server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Serve the login endpoints
  python main.py --serve --port 8080

  # Show the configuration read from the environment
  python main.py --show-config
        """,
    )
    parser.add_argument("--serve", action="store_true", help="Run the HTTP server")
    parser.add_argument("--show-config", action="store_true", help="Print the effective auth configuration")
    parser.add_argument("--host", default="0.0.0.0", help="Server bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8080, help="Server listen port (default: 8080)")

    args = parser.parse_args()

    try:
        if args.show_config:
            show_config()
            return

        if args.serve:
            from oauthweb.api.server import run

            run(host=args.host, port=args.port)
            return

        parser.print_help()
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        raise


if __name__ == "__main__":
    main()
