"""CLI entry point for the model coordinator.

Usage:
    coordinate "Summarise the open issues in this repository"
    coordinate --workspace ./project --show-plan "Create a word-count CLI in Python"
    coordinate --plan --json "Refactor utils.py into a package"
    coordinate "$ ls -la"
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys

_PLATFORMS = ["ollama", "litellm"]

_LOG_FORMAT = "%(asctime)s  %(levelname)-8s  %(name)s  %(message)s"
_LOG_DATE_FORMAT = "%H:%M:%S"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="coordinate",
        description="Route an objective across chat, code and vision models.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
environment variables:
  OLLAMA_HOST               Ollama server URL (default: http://localhost:11434)

  LITELLM_API_KEY           LiteLLM API key (required for --platform litellm)
  LITELLM_BASE_URL          LiteLLM base URL (required for --platform litellm)

  COORDINATOR_CHAT_MODEL    Conversational model (default: hermes3:8b)
  COORDINATOR_CODE_MODEL    Coding model (default: qwen2.5-coder:7b)
  COORDINATOR_VISION_MODEL  Vision model (default: llama3.2-vision:11b)
  COORDINATOR_MEMORY_DIR    Persist plans and corrections as JSON in this directory

examples:
  coordinate "What does a context manager do?"
  coordinate --workspace ./project "Create a word-count CLI in Python"
  coordinate --plan --show-plan --verbose "Refactor utils.py into a package"
""",
    )
    parser.add_argument("objective", help="The objective or message to handle.")
    parser.add_argument(
        "--platform",
        choices=_PLATFORMS,
        default="ollama",
        help="Model backend to use (default: ollama).",
    )
    parser.add_argument(
        "--workspace",
        default=".",
        metavar="DIR",
        help="Directory code steps may write to (default: current directory).",
    )
    parser.add_argument(
        "--memory-dir",
        default=os.environ.get("COORDINATOR_MEMORY_DIR"),
        metavar="DIR",
        help="Persist memory as JSON here; enables resuming plans across runs.",
    )
    parser.add_argument(
        "--plan",
        action="store_true",
        dest="run_plan",
        help="Plan the objective and run every step instead of a single turn.",
    )
    parser.add_argument(
        "--show-plan",
        action="store_true",
        help="Print the plan after execution.",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        dest="output_json",
        help="Output the plan and step history as JSON (with --plan).",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Show INFO-level progress logs on stderr (default: WARNING+ only).",
    )
    return parser


def _setup_logging(verbose: bool) -> None:
    """Configure root logger to stderr; level depends on --verbose."""
    level = logging.INFO if verbose else logging.WARNING
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATE_FORMAT))
    logging.root.handlers.clear()
    logging.root.addHandler(handler)
    logging.root.setLevel(level)


def _build_backend(platform: str):
    """Instantiate the model backend for the given platform."""
    if platform == "ollama":
        from backends.ollama import OllamaBackend

        return OllamaBackend()

    if platform == "litellm":
        from backends.litellm import LiteLLMBackend

        try:
            return LiteLLMBackend()
        except KeyError as exc:
            print(f"error: missing environment variable {exc}", file=sys.stderr)
            sys.exit(1)

    print(f"error: unknown platform {platform!r}", file=sys.stderr)
    sys.exit(1)


def _build_memory(directory: str | None):
    from coordinator.memory import InMemoryStore, JsonFileMemoryStore

    return JsonFileMemoryStore(directory) if directory else InMemoryStore()


def _print_section(title: str) -> None:
    print(f"\n{'─' * 60}")
    print(f"  {title}")
    print(f"{'─' * 60}")


def _print_plan(plan) -> None:
    _print_section(f"Plan ({plan.status.value})")
    for n, step in enumerate(plan.steps, start=1):
        deps = ", ".join(step.dependencies) or "none"
        print(f"  [{n}] {step.type.value:<10} {step.status.value:<11} {step.description}")
        print(f"       model={step.requires_backend.value} | deps={deps} | retries={step.retry_count}")


async def _run(args: argparse.Namespace) -> int:
    from coordinator.orchestrator import Orchestrator

    orchestrator = Orchestrator(
        _build_backend(args.platform),
        workspace=args.workspace,
        memory=_build_memory(args.memory_dir),
    )
    try:
        if not args.run_plan:
            print(await orchestrator.handle_task(args.objective))
            if args.show_plan and orchestrator.plan is not None:
                _print_plan(orchestrator.plan)
            return 0

        result = await orchestrator.run_plan(args.objective)
    finally:
        await orchestrator.close()

    if args.output_json:
        output = {
            "objective": result.objective,
            "plan": result.plan.to_dict(),
            "history": [
                {
                    "step": r.step_id,
                    "description": r.description,
                    "model": r.model,
                    "attempt": r.attempt,
                    "response": r.response,
                    "error": r.error,
                    "success": r.success,
                    "revisions": [
                        {"type": rev.type.value, "step": rev.step, "reason": rev.reason}
                        for rev in r.revisions
                    ],
                }
                for r in result.history
            ],
        }
        print(json.dumps(output, indent=2))
        return 0 if result.success else 1

    if args.show_plan:
        _print_plan(result.plan)

    _print_section("Execution History")
    for r in result.history:
        status = "OK " if r.success else "ERR"
        print(f"  [{status}] {r.step_id} (attempt {r.attempt}, {r.model}): {r.description}")
        detail = r.response if r.success else f"Error: {r.error}"
        snippet = detail[:200] + ("..." if len(detail) > 200 else "")
        print(f"        {snippet}")
    print()
    return 0 if result.success else 1


def main() -> None:
    from dotenv import load_dotenv
    load_dotenv()
    args = _build_parser().parse_args()
    _setup_logging(args.verbose)
    sys.exit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
