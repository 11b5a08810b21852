#!/usr/bin/env python3
"""
CMS OAuth broker - GitHub login for a browser-based CMS editor.

Runs the broker as an HTTP server (uvicorn + Starlette) or, through
`main_handler`, as an API-gateway serverless function. Configuration comes
from environment variables, optionally layered over a YAML file:

  GITHUB_CLIENT_ID, GITHUB_CLIENT_SECRET, PUBLIC_BASE_URL   (required)
  OAUTH_STATE_SECRET, ALLOWED_ORIGINS, OAUTH_AUTH_PAGE, ... (optional)
"""

import argparse
import logging
from pathlib import Path
from typing import Any

from adapters import create_app, make_event_handler, response_to_event
from broker_config import ConfigurationError, load_config
from oauth_broker import BrokerResponse, OAuthBroker

logger = logging.getLogger("cms-oauth")

_EVENT_HANDLER = None


def main_handler(event: dict, context: Any = None) -> dict:
    """Serverless entry point. The broker is built once per cold start."""
    global _EVENT_HANDLER
    if _EVENT_HANDLER is None:
        try:
            broker = OAuthBroker(load_config())
        except ConfigurationError as e:
            logger.error("broker: invalid configuration: %s", e)
            _EVENT_HANDLER = _config_error_handler(str(e))
        else:
            _EVENT_HANDLER = make_event_handler(broker)
    return _EVENT_HANDLER(event, context)


def _config_error_handler(message: str):
    """Handler that answers every event with the configuration error."""

    def handler(event: dict, context: Any = None) -> dict:
        return response_to_event(BrokerResponse.json(500, {"error": message}))

    return handler


def _configure_logging(audit_log: Path | None) -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    if audit_log is None:
        return

    # Audit logger - JSON-lines, kept out of the main log
    audit_log.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(audit_log)
    handler.setFormatter(logging.Formatter("%(message)s"))
    audit_logger = logging.getLogger("cms-oauth-audit")
    audit_logger.addHandler(handler)
    audit_logger.setLevel(logging.INFO)
    audit_logger.propagate = False


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="GitHub OAuth broker for CMS editors")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8787)
    parser.add_argument("--config", type=Path, default=None,
                        help="YAML file with a top-level 'broker' mapping")
    parser.add_argument("--audit-log", type=Path,
                        default=Path.home() / ".cms-oauth" / "audit.log")
    parser.add_argument("--no-audit-log", action="store_true",
                        help="leave audit events on the main log")
    args = parser.parse_args(argv)

    _configure_logging(None if args.no_audit_log else args.audit_log)

    import uvicorn

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        raise SystemExit(str(e))
    missing = config.missing_fields()
    if missing:
        # Fail closed: every route answers 500 until the env is fixed.
        logger.error("broker: missing required env: %s", ", ".join(missing))

    app = create_app(OAuthBroker(config))
    logger.info("broker: starting HTTP server on %s:%d (service=%s, auth_page=%s)",
                args.host, args.port, config.service_name, config.auth_page)
    uvicorn.run(app, host=args.host, port=args.port, log_level="info",
                proxy_headers=True, forwarded_allow_ips="*")


if __name__ == "__main__":
    main()
