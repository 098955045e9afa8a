"""
`patchstream` command-line interface.

Commands
--------
patchstream generate "<prompt>"                  -- stream a fresh tree from the endpoint
patchstream generate "<prompt>" --base tree.json -- delta-modify a saved tree
patchstream generate "<prompt>" --timeout 30     -- cancel if not finished in 30s
patchstream replay response.jsonl                -- feed a recorded response through a session
patchstream show tree.json                       -- print a saved tree as an outline

Exit codes: 0 completed, 1 transport error, 2 bad input, 130 cancelled.
"""

from __future__ import annotations

import argparse
import json
import sys
import threading
from typing import Optional

from .cli_display import (
    ProgressLine, TokenTracker, format_tree, setup_logger,
)
from .config import Config
from .session import SessionState, SessionStateError, StreamSession
from .transport import HttpTransport, ReplayTransport, Transport
from .tree import Tree


EXIT_OK = 0
EXIT_TRANSPORT_ERROR = 1
EXIT_BAD_INPUT = 2
EXIT_CANCELLED = 130


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def load_tree(path: str) -> Tree:
    with open(path, "r", encoding="utf-8") as f:
        return Tree.from_dict(json.load(f))


def save_tree(tree: Tree, path: str) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(tree.to_dict(), f, indent=2, ensure_ascii=False)
        f.write("\n")


def _load_base(args: argparse.Namespace) -> Optional[Tree]:
    if not args.base:
        return None
    try:
        return load_tree(args.base)
    except (OSError, ValueError) as e:
        print(f"Cannot load base tree {args.base}: {e}", file=sys.stderr)
        sys.exit(EXIT_BAD_INPUT)


def _run_session(transport: Transport, prompt: str, base: Optional[Tree],
                 args: argparse.Namespace) -> int:
    """Run one session with live progress and report the outcome."""
    progress = ProgressLine()
    tokens = TokenTracker()
    session = StreamSession(transport, token_tracker=tokens)
    session.on_snapshot = lambda tree: progress.update(tree, session.stats)

    timer: Optional[threading.Timer] = None
    if args.timeout:
        def _expire() -> None:
            try:
                session.cancel()
            except SessionStateError:
                pass  # finished before the timer fired
        timer = threading.Timer(args.timeout, _expire)
        timer.daemon = True

    try:
        thread = session.start_in_thread(prompt, base)
    except ValueError as e:
        print(f"Invalid request: {e}", file=sys.stderr)
        return EXIT_BAD_INPUT
    if timer is not None:
        timer.start()
    try:
        while thread.is_alive():
            thread.join(0.2)
    except KeyboardInterrupt:
        try:
            session.cancel()
        except SessionStateError:
            pass
    finally:
        if timer is not None:
            timer.cancel()

    tree = session.tree
    state = session.state
    if state is SessionState.COMPLETED:
        progress.done(f"Completed ({session.request.mode.value}): "
                      f"{session.stats.operations} ops, "
                      f"{session.stats.codec_errors} malformed lines skipped")
    elif state is SessionState.CANCELLED:
        progress.done("Cancelled")
    else:
        progress.done(f"Failed: {session.error}")

    print(format_tree(tree))
    if session.commentary:
        print()
        print(session.commentary)
    if tokens.call_count:
        print(f"\nTokens: prompt={tokens.total_prompt_tokens} "
              f"completion={tokens.total_completion_tokens}")

    if args.out and tree is not None:
        save_tree(tree, args.out)
        print(f"Saved tree to {args.out}")

    if state is SessionState.COMPLETED:
        return EXIT_OK
    if state is SessionState.CANCELLED:
        return EXIT_CANCELLED
    return EXIT_TRANSPORT_ERROR


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def _cmd_generate(args: argparse.Namespace, cfg: Config) -> int:
    transport = HttpTransport(
        args.endpoint or cfg.ENDPOINT_URL,
        api_key=cfg.API_KEY,
        headers=cfg.HEADERS,
        connect_timeout=cfg.CONNECT_TIMEOUT,
        read_timeout=cfg.READ_TIMEOUT,
        chunk_size=cfg.CHUNK_SIZE or None,
    )
    return _run_session(transport, args.prompt, _load_base(args), args)


def _cmd_replay(args: argparse.Namespace, cfg: Config) -> int:
    try:
        transport = ReplayTransport.from_file(args.file,
                                              chunk_size=args.chunk_size)
    except (OSError, ValueError) as e:
        print(f"Cannot replay {args.file}: {e}", file=sys.stderr)
        return EXIT_BAD_INPUT
    return _run_session(transport, args.prompt, _load_base(args), args)


def _cmd_show(args: argparse.Namespace, cfg: Config) -> int:
    try:
        tree = load_tree(args.file)
    except (OSError, ValueError) as e:
        print(f"Cannot load tree {args.file}: {e}", file=sys.stderr)
        return EXIT_BAD_INPUT
    print(format_tree(tree))
    return EXIT_OK


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

def _add_session_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--base", default=None,
                   help="Saved tree JSON to modify (delta mode)")
    p.add_argument("--out", default=None,
                   help="Write the resulting tree JSON here")
    p.add_argument("--timeout", type=float, default=None,
                   help="Cancel the session after this many seconds")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="patchstream",
        description="Build UI trees from streamed JSONL patches",
    )
    parser.add_argument("--config", default=None,
                        help="Path to .patchstream.yaml config file")
    subparsers = parser.add_subparsers(dest="cmd", metavar="COMMAND")
    subparsers.required = True

    # --- generate ---
    gen_p = subparsers.add_parser(
        "generate", help="Stream a tree from the producer endpoint")
    gen_p.add_argument("prompt", help="What to build or change")
    gen_p.add_argument("--endpoint", default=None,
                       help="Producer URL (default: from config)")
    _add_session_args(gen_p)
    gen_p.set_defaults(func=_cmd_generate)

    # --- replay ---
    replay_p = subparsers.add_parser(
        "replay", help="Feed a recorded JSONL response through a session")
    replay_p.add_argument("file", help="Recorded response body")
    replay_p.add_argument("--prompt", default="replay",
                          help="Prompt recorded with the request")
    replay_p.add_argument("--chunk-size", dest="chunk_size", type=int,
                          default=64, help="Bytes per replayed chunk (default: 64)")
    _add_session_args(replay_p)
    replay_p.set_defaults(func=_cmd_replay)

    # --- show ---
    show_p = subparsers.add_parser("show", help="Print a saved tree as an outline")
    show_p.add_argument("file", help="Tree JSON file")
    show_p.set_defaults(func=_cmd_show)

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(argv: Optional[list[str]] = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    cfg = Config.load(args.config)
    setup_logger(cfg.LOG_DIR, cfg.LOG_LEVEL)

    sys.exit(args.func(args, cfg))


if __name__ == "__main__":
    main()
