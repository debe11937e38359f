"""CLI entrypoint for matrix-chat."""

from __future__ import annotations

import argparse
import asyncio
from collections.abc import Sequence
from importlib import metadata

from .app import ChatApplication
from .catalog import ModelFilters, format_price
from .config import ensure_config_dir, load_config
from .exceptions import MatrixChatError
from .logging_utils import configure_logging
from .models import Message
from .state import MessageStatus


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="matrix-chat",
        description="matrix-chat - multi-session chat with remote language models",
    )
    parser.add_argument("--version", action="store_true", help="Print version and exit")
    commands = parser.add_subparsers(dest="command")

    models = commands.add_parser("models", help="List available models")
    models.add_argument("--search", default="", help="Filter by name or description")
    models.add_argument("--free", action="store_true", help="Only free-tier models")
    models.add_argument("--vision", action="store_true", help="Only image-capable models")
    models.add_argument("--moderated", action="store_true", help="Only moderated models")
    models.add_argument("--refresh", action="store_true", help="Refetch the catalog")

    commands.add_parser("conversations", help="List conversations")
    commands.add_parser("new", help="Start a new conversation")

    delete = commands.add_parser("delete", help="Delete a conversation")
    delete.add_argument("conversation_id")

    select = commands.add_parser("select", help="Make a conversation current")
    select.add_argument("conversation_id")

    show = commands.add_parser("show", help="Print a conversation")
    show.add_argument("conversation_id", nargs="?")

    send = commands.add_parser("send", help="Send a message to the current conversation")
    send.add_argument("text")
    send.add_argument(
        "--image", action="append", default=[], help="Attach an image file (repeatable)"
    )

    retry = commands.add_parser("retry", help="Retry a failed message")
    retry.add_argument("message_id")

    settings = commands.add_parser("settings", help="Show or change settings")
    settings.add_argument("--api-key")
    settings.add_argument("--model")
    settings.add_argument("--persona")
    return parser


def _render_message(message: Message) -> str:
    marker = {
        MessageStatus.SENDING: "…",
        MessageStatus.SUCCESS: " ",
        MessageStatus.ERROR: "!",
    }[message.status]
    images = f" [+{len(message.images)} image(s)]" if message.images else ""
    line = f"{marker} {message.role.upper()}> {message.text}{images}"
    if message.status is MessageStatus.ERROR:
        line += f"\n  TRANSMISSION.FAILED - retry with: matrix-chat retry {message.id}"
    return line


async def _run(app: ChatApplication, args: argparse.Namespace) -> int:
    app.restore()

    if args.command == "models":
        if args.refresh or not app.catalog.models:
            if not await app.refresh_catalog():
                print("Model catalog is stale; showing cached models.")
        filters = ModelFilters(
            free_only=args.free, vision_only=args.vision, moderated_only=args.moderated
        )
        selected = app.settings.current.model
        for model in app.catalog.filter(args.search, filters):
            tags = []
            if model.supports_vision:
                tags.append("VISION")
            if model.is_moderated:
                tags.append("MOD")
            current = "*" if model.id == selected else " "
            print(
                f"{current} {model.id}  {model.name}  "
                f"IN:{format_price(model.pricing.prompt)}/1K "
                f"OUT:{format_price(model.pricing.completion)}/1K {' '.join(tags)}".rstrip()
            )
        return 0

    if args.command == "conversations":
        for conversation in app.store.conversations:
            current = "*" if conversation.id == app.store.current_id else " "
            print(
                f"{current} {conversation.id}  {conversation.title} "
                f"({len(conversation.messages)} messages)"
            )
        return 0

    if args.command == "new":
        print(app.new_conversation().id)
        return 0

    if args.command == "delete":
        app.store.delete_conversation(args.conversation_id)
        return 0

    if args.command == "select":
        app.store.select(args.conversation_id)
        return 0

    if args.command == "show":
        conversation = (
            app.store.require(args.conversation_id)
            if args.conversation_id
            else app.store.current
        )
        if conversation is None:
            print("No conversation selected.")
            return 1
        print(conversation.title)
        for message in conversation.messages:
            print(_render_message(message))
        return 0

    if args.command == "send":
        images = [app.attach_image(path) for path in args.image]
        if not app.catalog.models:
            await app.refresh_catalog()
        reply = await app.submit(args.text, images)
        print(_render_message(reply))
        return 1 if reply.status is MessageStatus.ERROR else 0

    if args.command == "retry":
        conversation = next(
            (
                c
                for c in app.store.conversations
                if c.find_message(args.message_id) is not None
            ),
            None,
        )
        if conversation is None:
            print(f"No message {args.message_id!r}.")
            return 1
        reply = await app.retry(conversation.id, args.message_id)
        print(_render_message(reply))
        return 1 if reply.status is MessageStatus.ERROR else 0

    if args.command == "settings":
        changes = {
            key: value
            for key, value in (
                ("api_key", args.api_key),
                ("model", args.model),
                ("persona", args.persona),
            )
            if value is not None
        }
        if changes:
            app.settings.update(**changes)
        current = app.settings.current
        masked = f"{current.api_key[:6]}…" if current.api_key else "(not set)"
        print(f"api_key: {masked}\nmodel: {current.model or '(not set)'}")
        print(f"persona: {current.persona}")
        return 0

    return 0


async def _run_and_close(app: ChatApplication, args: argparse.Namespace) -> int:
    try:
        return await _run(app, args)
    finally:
        await app.close()


def main(argv: Sequence[str] | None = None) -> int:
    """Load configuration, handle CLI flags, and dispatch the subcommand."""

    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.version:
        try:
            version = metadata.version("matrix-chat")
        except metadata.PackageNotFoundError:
            version = "0.0.0"
        print(f"matrix-chat {version}")
        return 0

    if args.command is None:
        parser.print_help()
        return 0

    ensure_config_dir()
    config = load_config()
    configure_logging(config["logging"])
    app = ChatApplication(config)
    try:
        return asyncio.run(_run_and_close(app, args))
    except MatrixChatError as exc:
        print(f"error: {exc}")
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
