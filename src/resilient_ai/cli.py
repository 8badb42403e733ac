"""Command line interface for one-off AI requests."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from datetime import timedelta
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv

from .config import load_settings
from .credentials import CredentialManager, build_issuer, discover_identity
from .llm.client import AIClient
from .llm.routing import ProxyRouter
from .llm.types import AIClientError


def build_credential_manager(config: Dict[str, Any], environ: Optional[Mapping[str, str]] = None) -> CredentialManager:
    env = os.environ if environ is None else environ
    cred_cfg = config.get("credentials", {})
    issuer = build_issuer(
        config,
        secret=env.get("RESILIENT_AI_TOKEN_SECRET"),
        issuer_url=config.get("proxy", {}).get("token_issuer_url"),
        issuer_key=env.get("RESILIENT_AI_TOKEN_ISSUER_KEY"),
    )
    ip_echo_url = cred_cfg.get("ip_echo_url")
    return CredentialManager(
        issuer=issuer,
        identity_provider=lambda: discover_identity(ip_echo_url),
        default_validity=timedelta(hours=float(cred_cfg.get("default_validity_hours", 24))),
    )


def build_client(config: Dict[str, Any], environ: Optional[Mapping[str, str]] = None) -> AIClient:
    proxy_url = config.get("proxy", {}).get("url")
    manager = None
    if proxy_url:
        try:
            manager = build_credential_manager(config, environ)
        except AIClientError as exc:
            # Direct mode still works; proxied calls will fail with a clear configuration error.
            logging.getLogger(__name__).warning("Proxy credentials unavailable: %s", exc)
    router = ProxyRouter(credential_manager=manager, proxy_url=proxy_url)
    return AIClient(config, router=router, environ=environ)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Resilient AI request client")
    parser.add_argument("--settings", default="config/settings.yaml", help="Path to settings.yaml")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    ask = subparsers.add_parser("ask", help="Send a prompt and print the reply")
    ask.add_argument("prompt", help="Prompt text, or '-' to read from stdin")
    ask.add_argument("--provider", help="gemini, openai, azure_openai or perplexity")
    ask.add_argument("--json", action="store_true", dest="return_json", help="Require a JSON reply")
    ask.add_argument("--max-tokens", type=int)
    ask.add_argument("--temperature", type=float)
    ask.add_argument("--timeout", type=float, help="Per-attempt timeout in seconds")
    ask.add_argument("--system", help="System instruction")

    token = subparsers.add_parser("token", help="Show the proxy bearer credential")
    token.add_argument("--refresh", action="store_true", help="Force a new credential")

    transport = subparsers.add_parser("transport", help="Show which transport a provider would use")
    transport.add_argument("--provider")
    return parser


def _run_ask(client: AIClient, args: argparse.Namespace) -> None:
    prompt = sys.stdin.read() if args.prompt == "-" else args.prompt
    result = client.ask(
        prompt,
        provider=args.provider,
        return_json=args.return_json,
        max_tokens=args.max_tokens,
        temperature=args.temperature,
        timeout_seconds=args.timeout,
        system=args.system,
    )
    if result.json_text is not None:
        print(json.dumps(result.data, indent=2, ensure_ascii=False))
    else:
        print(result.text)
    print(
        f"[{result.provider} via {result.transport}, {result.usage.tokens_in}/{result.usage.tokens_out} tokens, "
        f"{result.latency_ms} ms]",
        file=sys.stderr,
    )


def _run_token(config: Dict[str, Any], args: argparse.Namespace) -> None:
    manager = build_credential_manager(config)
    credential = manager.get_credential(force_refresh=args.refresh)
    print(f"token      = {credential.masked()}")
    print(f"owner      = {credential.owner.username}@{credential.owner.device_id} ({credential.owner.source_ip})")
    print(f"issued_at  = {credential.issued_at.isoformat()}")
    print(f"expires_at = {credential.expires_at.isoformat()}")


def main(argv: Optional[list[str]] = None) -> int:
    load_dotenv()
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = load_settings(args.settings)
    try:
        if args.command == "token":
            _run_token(config, args)
            return 0

        client = build_client(config)
        if args.command == "transport":
            mode = client.transport_mode(args.provider)
            print(f"{client.provider(args.provider).name}: {mode}")
            return 0

        _run_ask(client, args)
        return 0
    except AIClientError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
