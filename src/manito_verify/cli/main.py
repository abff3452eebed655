#!/usr/bin/env python
from __future__ import annotations

import argparse
import asyncio
import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from manito_verify.cli.output import ConsoleOutput
from manito_verify.collaborators import (
    InMemoryDocumentStorage,
    InMemoryProfileDirectory,
    load_fixtures,
)
from manito_verify.config.settings import VerificationSettings, validate_environment
from manito_verify.errors import VerificationError
from manito_verify.orchestrator import VerificationOrchestrator
from manito_verify.rut import validate_rut
from manito_verify.validators import build_validators

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    # Third-party clients are noisy at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("manito_verify").setLevel(logging.DEBUG if verbose else logging.INFO)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="manito-verify",
        description="Provider verification workflow engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--fixtures", type=Path, help="JSON file with providers and documents")
    parser.add_argument("--db", type=Path, help="SQLite database path")
    parser.add_argument("--json", action="store_true", help="Output JSON")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    advance_p = subparsers.add_parser("advance", help="Advance a provider's workflow")
    advance_p.add_argument("provider_id")

    status_p = subparsers.add_parser("status", help="Show workflow state and trust score")
    status_p.add_argument("provider_id")

    history_p = subparsers.add_parser("history", help="Show the audit history")
    history_p.add_argument("provider_id")

    decide_p = subparsers.add_parser("decide", help="Record a manual review decision")
    decide_p.add_argument("provider_id")
    decide_p.add_argument("decision", choices=["approved", "rejected"])
    decide_p.add_argument("--admin", required=True, help="Admin identifier")
    decide_p.add_argument("--notes", help="Decision notes")

    resume_p = subparsers.add_parser("resume", help="Clear a stalled step")
    resume_p.add_argument("provider_id")
    resume_p.add_argument("--admin", required=True, help="Admin identifier")
    resume_p.add_argument("--notes", help="Notes")

    resubmit_p = subparsers.add_parser("resubmit", help="Ask the provider to upload documents again")
    resubmit_p.add_argument("provider_id")
    resubmit_p.add_argument("--admin", required=True, help="Admin identifier")
    resubmit_p.add_argument("--notes", help="Notes")

    refresh_p = subparsers.add_parser("refresh-score", help="Recompute the trust score")
    refresh_p.add_argument("provider_id")

    rut_p = subparsers.add_parser("rut", help="Check a RUT locally (no network)")
    rut_p.add_argument("value")

    subparsers.add_parser("env", help="Show environment diagnostics")
    return parser


def _load_collaborators(path: Optional[Path]):
    fixtures = path or (Path(os.environ["MANITO_FIXTURES"]) if os.environ.get("MANITO_FIXTURES") else None)
    if fixtures is None:
        logger.warning("No fixtures given; every provider will be unknown")
        return InMemoryProfileDirectory(), InMemoryDocumentStorage(), {}
    return load_fixtures(fixtures)


def _print_verification(out: ConsoleOutput, args: argparse.Namespace, verification) -> None:
    if args.json:
        out.print_json(verification.snapshot())
    else:
        out.print_verification(verification)


async def _run_workflow_command(args: argparse.Namespace, out: ConsoleOutput) -> int:
    settings = VerificationSettings.from_env(dotenv=False)
    if args.db:
        settings.db_path = args.db

    profiles, documents, stand_in = _load_collaborators(args.fixtures)
    validators = build_validators(settings, stand_in=stand_in)
    orchestrator = VerificationOrchestrator.from_settings(settings, validators, profiles, documents)
    await orchestrator.initialize()

    try:
        if args.command == "advance":
            verification = await orchestrator.advance(args.provider_id)
            _print_verification(out, args, verification)
        elif args.command == "status":
            status = await orchestrator.get_status(args.provider_id)
            if args.json:
                out.print_json({
                    **status.verification.snapshot(),
                    "trust_score": status.trust_score.score if status.trust_score else None,
                    "tier": status.trust_score.tier.value if status.trust_score else None,
                })
            else:
                out.print_status(status)
        elif args.command == "history":
            entries = await orchestrator.recorder.entries(args.provider_id)
            if args.json:
                out.print_json([e.to_dict() for e in entries])
            else:
                out.print_history(entries)
        elif args.command == "decide":
            verification = await orchestrator.record_manual_decision(
                args.provider_id, args.decision, args.notes, args.admin
            )
            _print_verification(out, args, verification)
        elif args.command == "resume":
            verification = await orchestrator.resume_stalled_step(
                args.provider_id, args.admin, args.notes
            )
            _print_verification(out, args, verification)
        elif args.command == "resubmit":
            verification = await orchestrator.request_resubmission(
                args.provider_id, args.admin, args.notes
            )
            if args.json:
                out.print_json(verification.snapshot())
            else:
                out.print_success(f"Resubmission requested for {args.provider_id}")
        elif args.command == "refresh-score":
            record = await orchestrator.refresh_trust_score(args.provider_id)
            if args.json:
                out.print_json(record.to_dict())
            else:
                out.print_trust_score(record)
    except VerificationError as e:
        out.print_error(str(e))
        return 1
    finally:
        await orchestrator.shutdown()
    return 0


def _run_env(args: argparse.Namespace, out: ConsoleOutput) -> int:
    result = validate_environment(VerificationSettings.from_env(dotenv=False))
    if args.json:
        out.print_json(result.to_dict())
        return 0 if result.is_valid else 1

    out.print(f"Validator mode: [info]{result.validator_mode}[/info] -> {result.resolved_mode}")
    out.print(f"API key configured: {'yes' if result.api_key_set else 'no'}")
    for missing in result.missing_required:
        out.print_error(missing)
    for warning in result.warnings:
        out.print_warning(warning)
    return 0 if result.is_valid else 1


def main(argv: Optional[list] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    load_dotenv(Path.cwd() / ".env")
    _configure_logging(args.verbose)
    out = ConsoleOutput()

    if args.command is None:
        parser.print_help()
        return 0
    if args.command == "rut":
        check = validate_rut(args.value)
        if args.json:
            out.print_json({"is_valid": check.is_valid, "formatted": check.formatted, "error": check.error})
        else:
            out.print_rut(args.value, check)
        return 0 if check.is_valid else 1
    if args.command == "env":
        return _run_env(args, out)

    return asyncio.run(_run_workflow_command(args, out))


if __name__ == "__main__":
    raise SystemExit(main())
