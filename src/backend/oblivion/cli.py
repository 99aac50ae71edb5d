"""
Command-line entry point.

Usage:
    oblivion serve --port 8000
    oblivion providers
    oblivion set-key openai
    oblivion ask "What is 2+2?" -s openai:gpt-4o-mini -s ollama:llama3.2
    oblivion ask "Review this diff" -s openai:gpt-4o -s groq:llama-3.1-8b-instant --use-prompt code_architect
"""
from __future__ import annotations

import argparse
import asyncio
import getpass
import logging
import sys
from typing import List, Optional

from oblivion.config import settings
from oblivion.context import AppContext
from oblivion.errors import OblivionError
from oblivion.models.schemas import AskResult, QueryOptions

logger = logging.getLogger(__name__)


def _serve(args) -> int:
    import uvicorn

    uvicorn.run(
        "oblivion.main:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
    )
    return 0


def _providers(args) -> int:
    ctx = AppContext.build()
    stored = set(ctx.credentials.list_providers())
    for provider in ctx.registry.list_providers():
        key = "stored key" if provider.provider_id in stored else ("key required" if provider.requires_key else "no key")
        print(f"  {provider.provider_id:<12} {provider.display_name:<20} [{key}]")
        print(f"  {'':<12} tags: {', '.join(sorted(provider.capability_tags))}")
        if provider.models:
            print(f"  {'':<12} models: {', '.join(provider.models)}")
    asyncio.run(ctx.aclose())
    return 0


def _set_key(args) -> int:
    ctx = AppContext.build()
    try:
        ctx.registry.get(args.provider)
        secret = getpass.getpass(f"API key for {args.provider}: ")
        passphrase = getpass.getpass("Passphrase: ")
        if passphrase != getpass.getpass("Repeat passphrase: "):
            print("Passphrases do not match", file=sys.stderr)
            return 1
        ctx.credentials.save(args.provider, secret, passphrase)
    except OblivionError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        asyncio.run(ctx.aclose())
    print(f"Key for {args.provider} stored in {ctx.credentials.path or '(memory)'}")
    return 0


async def _run_ask(args) -> int:
    ctx = AppContext.build()
    try:
        specs = []
        for spec in args.session:
            provider_id, _, model_name = spec.partition(":")
            if not model_name:
                print(f"Invalid session {spec!r}; expected provider:model", file=sys.stderr)
                return 2
            specs.append((provider_id, model_name))

        # Prompted once, before any query starts, and only when a stored key is needed
        passphrase = None
        if any(ctx.credentials.has(provider_id) for provider_id, _ in specs):
            passphrase = getpass.getpass("Passphrase: ")

        for provider_id, model_name in specs:
            credential = None
            if ctx.credentials.has(provider_id):
                credential = ctx.credentials.secret_source(provider_id, lambda: passphrase)
            ctx.fleet.add_session(provider_id, model_name, credential)

        if args.prompt_id:
            ctx.prompts.set_active(args.prompt_id)
        options = QueryOptions(timeout_seconds=args.timeout, system_prompt=args.system)
        result = await ctx.orchestrator.ask(args.prompt, options, synthesize=args.synthesize)
        _print_ask(result)
        return 0 if result.consensus is not None else 1
    except OblivionError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await ctx.aclose()


def _print_ask(result: AskResult) -> None:
    for r in result.results:
        print(f"\n─── {r.label} ───")
        if r.succeeded:
            print(r.text)
            print(f"({r.latency_ms}ms)")
        else:
            print(f"FAILED ({r.outcome.reason.value}): {r.outcome.message}")

    print("\n══════ CONSENSUS ══════")
    if result.consensus is None:
        print(result.consensus_error)
        return
    report = result.consensus
    print(report.synthesized_answer)
    print(f"\n  Agreement:  {report.agreement_score:.0%}")
    print(f"  Confidence: {report.confidence:.0%}")
    if report.dissenting:
        print(f"  Dissenting: {', '.join(r.label for r in report.dissenting)}")
    if report.synthesized_by:
        print(f"  Written by: {report.synthesized_by}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="oblivion",
        description="Query several AI providers at once and derive a consensus answer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true", help="Reload on code changes")
    serve.set_defaults(handler=_serve)

    providers = sub.add_parser("providers", help="List known providers")
    providers.set_defaults(handler=_providers)

    set_key = sub.add_parser("set-key", help="Encrypt and store a provider API key")
    set_key.add_argument("provider", help="Provider id, e.g. openai")
    set_key.set_defaults(handler=_set_key)

    ask = sub.add_parser("ask", help="Ask every session and print the consensus")
    ask.add_argument("prompt")
    ask.add_argument(
        "-s", "--session", action="append", required=True,
        help="provider:model, repeatable (max %d)" % settings.max_active_sessions,
    )
    ask.add_argument("--system", default=None, help="System prompt sent to every provider")
    ask.add_argument(
        "--use-prompt", dest="prompt_id", default=None, help="Id of a saved prompt to use as the system prompt"
    )
    ask.add_argument("--timeout", type=float, default=None, help="Per-session timeout in seconds")
    ask.add_argument("--synthesize", action="store_true", help="Let the configured synthesizer write the answer")
    ask.set_defaults(handler=lambda args: asyncio.run(_run_ask(args)))

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    args = build_parser().parse_args(argv)
    return args.handler(args)


if __name__ == "__main__":
    sys.exit(main())
