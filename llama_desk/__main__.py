"""CLI entrypoint for LlamaDesk."""

from __future__ import annotations

import argparse
import asyncio
from collections.abc import Sequence
from importlib import metadata
from pathlib import Path
import sys
from typing import Any

from .backend import build_backend
from .config import ensure_config_dir, load_config, models_from_config
from .controller import SessionController
from .exceptions import NotFoundError
from .logging_utils import configure_logging
from .message_store import MessageState
from .models import ModelRegistry


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="llamadesk",
        description="LlamaDesk - chat with local language models",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print version and exit",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to a config.toml (default: ~/.config/llamadesk/config.toml)",
    )
    parser.add_argument(
        "--prompt",
        default=None,
        help="Generate a single reply without starting the UI and print it",
    )
    parser.add_argument(
        "--model",
        default=None,
        help="Model id to use with --prompt (default: first configured model)",
    )
    return parser


async def run_once(config: dict[str, Any], prompt: str, model_id: str | None = None) -> int:
    """Answer one prompt through the same session controller the UI uses."""
    registry = ModelRegistry()
    controller = SessionController(build_backend(config["backend"], registry), registry)
    await controller.bootstrap(lambda: models_from_config(config))
    if model_id is not None:
        try:
            await controller.select_model(model_id)
        except NotFoundError as exc:
            print(str(exc), file=sys.stderr)
            return 2

    result = await controller.submit(prompt)
    if not result.accepted:
        print(result.message, file=sys.stderr)
        return 2

    await controller.wait_idle()
    reply = controller.messages[-1]
    if reply.state is MessageState.FAILED:
        print(reply.content, file=sys.stderr)
        return 1
    print(reply.content)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Handle CLI flags, then run a one-shot prompt or the TUI."""

    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.version:
        try:
            version = metadata.version("llamadesk")
        except metadata.PackageNotFoundError:
            version = "0.0.0"
        print(f"llamadesk {version}")
        return 0

    if args.config is None:
        ensure_config_dir()
    config = load_config(args.config)

    if args.prompt is not None:
        configure_logging(config["logging"])
        return asyncio.run(run_once(config, args.prompt, args.model))

    from .app import LlamaDeskApp

    app = LlamaDeskApp(config=config)
    app.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
