"""
main.py — OmniCore application entry point.

Parses CLI args, loads configuration, builds the pipeline orchestrator, and
either answers one query, runs an interactive prompt, or serves the web API.
"""

from __future__ import annotations

import argparse
import sys
import traceback
from typing import Optional, Sequence

# ──────────────────────────────────────────────────────────────
# Banner
# ──────────────────────────────────────────────────────────────

_BANNER = r"""
   ___                  _  ____
  / _ \ _ __ ___  _ __ (_)/ ___|___  _ __ ___
 | | | | '_ ` _ \| '_ \| | |   / _ \| '__/ _ \
 | |_| | | | | | | | | | | |__| (_) | | |  __/
  \___/|_| |_| |_|_| |_|_|\____\___/|_|  \___|

        OmniCore AI  v1.0 · multi-model verified
"""

_INTERACTIVE_HELP = """\
Type a question and press Enter.
  :domain <name>   set the domain hint (Auto-Detect, Mathematics, Code, Medical, Finance, General)
  :samples         list sample queries
  :history         show the last answers, newest first
  :quit            exit
"""


# ──────────────────────────────────────────────────────────────
# Argument parsing
# ──────────────────────────────────────────────────────────────

def _build_parser() -> argparse.ArgumentParser:
    from core.constants import DOMAINS

    p = argparse.ArgumentParser(
        prog="omnicore",
        description="OmniCore — five-stage verified question answering",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p.add_argument("-q", "--query", default=None, help="Answer a single query and exit")
    p.add_argument(
        "--domain",
        default=DOMAINS[0],
        help=f"Domain hint, one of: {', '.join(DOMAINS)}",
    )
    p.add_argument("--interactive", action="store_true", help="Read queries from stdin")
    p.add_argument("--web", action="store_true", help="Serve the FastAPI web API")
    p.add_argument("--port", type=int, default=None, help="Web API port (overrides config)")
    p.add_argument("--config", default=None, help="Path to omnicore.yaml")
    p.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARN"],
        default=None,
        help="Minimum log level for stderr output (overrides config)",
    )
    p.add_argument("--seed", type=int, default=None, help="Seed timing and fallback answers")
    p.add_argument(
        "--no-animation",
        action="store_true",
        help="Print the final confidence without counting up",
    )
    p.add_argument(
        "--fast",
        action="store_true",
        help="Skip simulated stage delays",
    )
    return p


# ──────────────────────────────────────────────────────────────
# Run modes
# ──────────────────────────────────────────────────────────────

def _run_once(orchestrator, query: str, domain: str) -> int:
    """Submit one query and block until it completes. Returns exit code."""
    if not orchestrator.submit(query, domain):
        return 2
    orchestrator.wait()
    return 0 if orchestrator.last_result is not None else 1


def _run_interactive(orchestrator, view, domain: str) -> int:
    """Prompt loop on stdin. Returns exit code."""
    from answer.catalog import sample_queries
    from core.constants import normalize_domain

    print(_INTERACTIVE_HELP)
    while True:
        try:
            line = input(f"omnicore[{domain}]> ")
        except EOFError:
            print()
            return 0
        line = line.strip()
        if not line:
            continue
        if line in (":quit", ":q", ":exit"):
            return 0
        if line == ":history":
            print(view.render_history())
            continue
        if line == ":samples":
            for s in sample_queries():
                print(f"  [{s['domain']}] {s['query']}")
            continue
        if line.startswith(":domain"):
            wanted = line[len(":domain"):].strip()
            canonical = normalize_domain(wanted)
            if canonical is None:
                print(f"Unknown domain: {wanted!r}")
            else:
                domain = canonical
            continue
        if orchestrator.submit(line, domain):
            orchestrator.wait()


def _run_web(orchestrator, host: str, port: int) -> int:
    from ui.web_app import start_web_server

    print(f"[INFO] Web API → http://localhost:{port}/state")
    print("       Press Ctrl-C to stop.")
    start_web_server(orchestrator, host=host, port=port)
    return 0


# ──────────────────────────────────────────────────────────────
# Main
# ──────────────────────────────────────────────────────────────

def main(argv: Optional[Sequence[str]] = None) -> int:
    """Application entry point. Returns process exit code."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    from core.config import load_config
    from core.constants import C, normalize_domain
    from core.logger import get_logger, set_stderr_level

    overrides: dict = {}
    if args.seed is not None:
        overrides.setdefault("pipeline", {})["seed"] = args.seed
    if args.fast:
        overrides.setdefault("pipeline", {}).update(stage_base_ms=0, stage_jitter_ms=0)
    if args.no_animation:
        overrides.setdefault("animation", {})["enabled"] = False
    if args.port is not None:
        overrides.setdefault("web", {})["port"] = args.port
    if args.log_level is not None:
        overrides.setdefault("logging", {})["level"] = args.log_level

    try:
        config = load_config(args.config, overrides=overrides)
    except (FileNotFoundError, ValueError) as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        return 2

    set_stderr_level(config.logging.level)
    log = get_logger()
    C.validate()

    domain = normalize_domain(args.domain)
    if domain is None:
        parser.error(f"unknown domain {args.domain!r}")

    log.info("main", "args_parsed", {
        "query": args.query,
        "domain": domain,
        "interactive": args.interactive,
        "web": args.web,
        "seed": config.pipeline.seed,
        "log_dir": str(log.log_dir),
    })

    from pipeline.controller import PipelineOrchestrator
    from ui.animator import ConfidenceAnimator
    from ui.console import ConsoleView

    orchestrator = PipelineOrchestrator(config=config)

    exit_code = 0
    view = None
    try:
        if args.web:
            exit_code = _run_web(orchestrator, config.web.host, config.web.port)
        else:
            print(_BANNER)
            view = ConsoleView(
                orchestrator,
                animator=ConfidenceAnimator.from_config(config.animation),
            )
            if args.query is not None:
                exit_code = _run_once(orchestrator, args.query, domain)
            elif args.interactive or sys.stdin.isatty():
                exit_code = _run_interactive(orchestrator, view, domain)
            else:
                exit_code = _run_once(orchestrator, sys.stdin.read(), domain)
    except KeyboardInterrupt:
        print("\n[INFO] Interrupted — shutting down…")
    except Exception:  # noqa: BLE001
        tb = traceback.format_exc()
        print(tb, file=sys.stderr)
        log.critical("main", "unhandled_exception", {"traceback": tb})
        exit_code = 1
    finally:
        orchestrator.shutdown()
        if view is not None:
            view.close()

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
