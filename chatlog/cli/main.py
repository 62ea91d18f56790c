# chatlog/cli/main.py
"""
CLI for inspecting and driving a chat log directory: read, post, revoke, react, check, sweep.
"""

import json
import logging
import mimetypes
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from chatlog.attachments import Upload
from chatlog.config import ChatConfig
from chatlog.core.canon import canonical_json_str
from chatlog.core.types import MessageView
from chatlog.room import ChatRequestError, ChatRoom
from chatlog.storage.shards import ShardManager
from chatlog.verify.verifier import LogVerifier

app = typer.Typer(
    name="chatlog",
    help="Inspect and drive the file-backed chat room log",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()


def get_config(ctx: typer.Context, dir_flag: Optional[Path] = None) -> ChatConfig:
    """Resolve the storage root in this order:
    1. --dir flag (on the command, then on the app)
    2. CHATLOG_DIR environment variable
    3. /tmp/chat on serverless hosts, else ./chat
    """
    root = dir_flag or (ctx.obj or {}).get("root")
    try:
        return ChatConfig.from_env(root)
    except ValueError as e:
        console.print(f"[red]Invalid configuration: {e}[/]")
        raise typer.Exit(1)


def _format_time(millis: int) -> str:
    return datetime.fromtimestamp(millis / 1000).strftime("%Y-%m-%d %H:%M:%S")


def _print_views(views: List[MessageView]) -> None:
    for view in views:
        msg = view.message
        seq = f"{msg.sequence:4d}" if msg.sequence is not None else "   ?"
        console.print(
            f"[bold cyan]{seq} | {_format_time(msg.created_at)} | "
            f"{escape(msg.author.nickname)} ({msg.author.external_id}) | {msg.id}[/]"
        )
        if view.revoked:
            console.print("  [dim italic]message revoked[/]")
        else:
            if view.text:
                console.print(f"  {escape(view.text[:160])}{'...' if len(view.text) > 160 else ''}")
            if view.attachments:
                console.print(f"  [magenta]{len(view.attachments)} image(s)[/]")
        if view.reactions:
            console.print("  " + "  ".join(f"{escape(r.emoji)} {r.count}" for r in view.reactions))
        console.print("  " + "─" * 90)


@app.callback()
def main(
    ctx: typer.Context,
    root: Optional[Path] = typer.Option(
        None,
        "--dir",
        help="Chat storage directory (overrides CHATLOG_DIR env var)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log storage activity"),
):
    """Manage a chat room log directory."""
    ctx.obj = {"root": root}
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=console, show_path=False)],
        )


@app.command()
def messages(
    ctx: typer.Context,
    root: Optional[Path] = typer.Option(None, "--dir", hidden=True),
    limit: int = typer.Option(20, "--limit", "-n", help="Number of recent messages to show"),
    as_json: bool = typer.Option(False, "--json", help="Print the merged views as JSON"),
):
    """Show the most recent messages with revocations and reactions applied."""
    config = get_config(ctx, root)
    if not config.base_dir.exists():
        console.print(f"[red]Chat directory not found: {config.base_dir}[/]")
        console.print("[yellow]To get started:[/]")
        console.print("  • Post a message first: chatlog post <nickname> <qq> \"hello\"")
        console.print("  • Set env var: export CHATLOG_DIR=/path/to/chat")
        raise typer.Exit(1)

    views = ChatRoom(config).messages(limit)
    if as_json:
        typer.echo(json.dumps([v.to_dict() for v in views], ensure_ascii=False, indent=2))
        return
    if not views:
        console.print("[yellow]No messages yet.[/]")
        return
    _print_views(views)


@app.command()
def post(
    ctx: typer.Context,
    nickname: str = typer.Argument(..., help="Display name"),
    qq: str = typer.Argument(..., help="Numeric id, 5-15 digits"),
    text: Optional[str] = typer.Argument(None, help="Message text"),
    image: Optional[List[Path]] = typer.Option(None, "--image", "-i", help="Attach an image (repeatable)"),
    root: Optional[Path] = typer.Option(None, "--dir", hidden=True),
):
    """Post a message as NICKNAME/QQ."""
    config = get_config(ctx, root)
    uploads = []
    for path in image or []:
        try:
            data = path.read_bytes()
        except OSError as e:
            console.print(f"[red]Cannot read {path}: {e}[/]")
            raise typer.Exit(1)
        mime = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        uploads.append(Upload(data=data, mime=mime, filename=path.name))

    try:
        posted = ChatRoom(config).post_message(nickname, qq, text, uploads)
    except ChatRequestError as e:
        console.print(f"[red]Rejected ({e.status}): {escape(str(e))}[/]")
        raise typer.Exit(1)

    console.print(f"[green]Posted message {posted.id} (seq {posted.sequence})[/]")


@app.command()
def revoke(
    ctx: typer.Context,
    message_id: str = typer.Argument(..., help="Message to hide"),
    nickname: str = typer.Argument(..., help="Author nickname"),
    qq: str = typer.Argument(..., help="Author numeric id"),
    root: Optional[Path] = typer.Option(None, "--dir", hidden=True),
):
    """Revoke your own message."""
    config = get_config(ctx, root)
    try:
        ChatRoom(config).revoke(message_id, nickname, qq)
    except ChatRequestError as e:
        console.print(f"[red]Rejected ({e.status}): {escape(str(e))}[/]")
        raise typer.Exit(1)
    console.print(f"[green]Message {message_id} revoked[/]")


@app.command()
def react(
    ctx: typer.Context,
    message_id: str = typer.Argument(..., help="Message to react to"),
    emoji: str = typer.Argument(..., help="Reaction emoji"),
    nickname: str = typer.Argument(..., help="Your nickname"),
    qq: str = typer.Argument(..., help="Your numeric id"),
    root: Optional[Path] = typer.Option(None, "--dir", hidden=True),
):
    """Toggle an emoji reaction on a message."""
    config = get_config(ctx, root)
    try:
        views = ChatRoom(config).react(message_id, emoji, nickname, qq)
    except ChatRequestError as e:
        console.print(f"[red]Rejected ({e.status}): {escape(str(e))}[/]")
        raise typer.Exit(1)

    target = next((v for v in views if v.id == message_id), None)
    counts = "  ".join(f"{r.emoji} {r.count}" for r in target.reactions) if target else ""
    console.print(f"[green]Reactions on {message_id}:[/] {counts or '—'}")


@app.command()
def shards(
    ctx: typer.Context,
    root: Optional[Path] = typer.Option(None, "--dir", hidden=True),
):
    """List shard files with message counts and last modification."""
    config = get_config(ctx, root)
    manager = ShardManager(config.base_dir)
    found = manager.list_shards()
    if not found:
        console.print(f"[yellow]No shards found in {config.base_dir}[/]")
        return

    table = Table(title="Shards")
    table.add_column("Index")
    table.add_column("File")
    table.add_column("Messages")
    table.add_column("Modified")

    active = found[-1].index
    for shard in found:
        try:
            modified = datetime.fromtimestamp(shard.path.stat().st_mtime).strftime("%Y-%m-%d %H:%M:%S")
        except OSError:
            modified = "—"
        label = f"{shard.index} (active)" if shard.index == active else str(shard.index)
        table.add_row(label, shard.name, str(len(manager.load(shard))), modified)

    console.print(table)


@app.command()
def verify(
    ctx: typer.Context,
    root: Optional[Path] = typer.Option(None, "--dir", hidden=True),
):
    """Check shard capacity, sequence order and id uniqueness across the log."""
    config = get_config(ctx, root)
    if not config.base_dir.exists():
        console.print(f"[red]Chat directory not found: {config.base_dir}[/]")
        raise typer.Exit(1)

    result = LogVerifier(ShardManager(config.base_dir), capacity=config.shard_capacity).verify()
    if result.is_valid:
        console.print(f"[green]✓ {result}[/]")
        return

    console.print(f"[red]✗ Log check found {len(result.failures)} issue(s) in {config.base_dir}[/]")
    for failure in result.failures:
        console.print(f"  • {escape(f'[{failure.shard}:{failure.index}]')} {failure.category}: {escape(failure.message)}")
    raise typer.Exit(1)


@app.command()
def export(
    ctx: typer.Context,
    root: Optional[Path] = typer.Option(None, "--dir", hidden=True),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output file (default: chat-export.jsonl)"),
    limit: int = typer.Option(200, "--limit", "-n", help="Number of recent messages to export"),
):
    """Export the current merged view as JSONL (one message per line)."""
    config = get_config(ctx, root)
    views = ChatRoom(config).messages(limit)
    if not views:
        console.print("[yellow]No messages to export[/]")
        raise typer.Exit(0)

    out_path = output or Path("chat-export.jsonl")
    with open(out_path, "w", encoding="utf-8") as f:
        for view in views:
            f.write(canonical_json_str(view.to_dict()) + "\n")

    console.print(f"[green]Exported {len(views)} messages to {out_path}[/]")


@app.command()
def sweep(
    ctx: typer.Context,
    root: Optional[Path] = typer.Option(None, "--dir", hidden=True),
    hours: Optional[float] = typer.Option(None, "--hours", help="Override the retention age"),
):
    """Delete shards, side-tables and images older than the retention age."""
    config = get_config(ctx, root)
    if hours is not None:
        config.retention = timedelta(hours=hours)
    report = ChatRoom(config).sweep()
    console.print(f"[green]Removed {len(report.removed)} file(s), kept {report.kept}[/]")
    for path in report.removed:
        console.print(f"  • {path.name}")


if __name__ == "__main__":
    app()
