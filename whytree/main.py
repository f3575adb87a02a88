# whytree/main.py
"""
whytree CLI entrypoint.

Default behavior:
- Text in -> AnalysisSession -> counselor question out
- /tree turns the dialogue into a Mermaid cause tree and saves the analysis

Options:
- --api-base  : talk to a running whytree API instead of calling the model directly
- --data-dir  : where saved analyses live (default: WHYTREE_DATA_DIR)
- --ephemeral : keep saved analyses in memory only

`whytree serve` runs the HTTP API with uvicorn.
"""

from __future__ import annotations

import argparse
import time
from pathlib import Path
from typing import Optional

from whytree.clients.api_client import ChatApiClient
from whytree.clients.gemini_client import ModelGateway
from whytree.config.settings import Settings, load_settings
from whytree.core.exchange import LocalChatTransport
from whytree.core.models import ROLE_USER, Analysis
from whytree.core.session import SUGGESTED_MESSAGES_FOR_TREE, AnalysisSession
from whytree.storage.analysis_store import AnalysisStore
from whytree.storage.blob import FileBlobStorage, InMemoryBlobStorage

HELP_TEXT = """Commands:
  /tree                 finish the analysis and build the cause tree
  /new                  start a new analysis (the current one is dropped)
  /history              list saved analyses
  /show <id>            show a saved analysis (an id prefix is enough)
  /delete <id>          delete a saved analysis
  /clear-history        delete every saved analysis
  /export <id> <path>   write a saved tree to a .mmd file
  /help                 show this help
  exit | quit           leave
"""


# -----------------------------
# Rendering
# -----------------------------

def _fmt_time(ms: int) -> str:
    return time.strftime("%Y-%m-%d %H:%M", time.localtime(ms / 1000))


def render_tree(diagram: Optional[str]) -> str:
    if not diagram:
        return "(the model did not return a tree for this dialogue)"
    return (
        "----- cause tree (Mermaid) -----\n"
        f"{diagram}\n"
        "--------------------------------\n"
        "Paste it into any Mermaid viewer (e.g. https://mermaid.live) to see the diagram."
    )


def render_analysis(analysis: Analysis) -> str:
    lines = [
        f"# {analysis.title}",
        f"id: {analysis.id}",
        f"created: {_fmt_time(analysis.created_at)}  updated: {_fmt_time(analysis.updated_at)}",
        "",
    ]
    for msg in analysis.messages:
        who = "You" if msg.role == ROLE_USER else "Counselor"
        lines.append(f"{who}: {msg.content}")
    lines.append("")
    lines.append(render_tree(analysis.tree_artifact))
    return "\n".join(lines)


def render_history(store: AnalysisStore) -> str:
    if not store.analyses:
        return "No saved analyses yet."
    rows = []
    for a in store.analyses:
        title = a.title if len(a.title) <= 50 else a.title[:47] + "..."
        rows.append(f"  {a.id[:8]}  {_fmt_time(a.updated_at)}  {title}")
    return "Saved analyses (newest first):\n" + "\n".join(rows)


# -----------------------------
# Wiring
# -----------------------------

def build_session(settings: Settings, api_base: Optional[str] = None) -> AnalysisSession:
    base = api_base or settings.api_base
    if base:
        return AnalysisSession(ChatApiClient(api_base=base, timeout=settings.gemini_timeout_seconds + 30))
    return AnalysisSession(LocalChatTransport(ModelGateway(settings)))


def build_store(settings: Settings, data_dir: Optional[str] = None, ephemeral: bool = False) -> AnalysisStore:
    if ephemeral:
        return AnalysisStore(InMemoryBlobStorage())
    return AnalysisStore(FileBlobStorage(data_dir or settings.data_dir))


def _resolve(store: AnalysisStore, prefix: str) -> Optional[Analysis]:
    if not prefix:
        print("Please give an analysis id (see /history).")
        return None
    matches = store.find_by_prefix(prefix)
    if not matches:
        print(f"No saved analysis matches {prefix!r}.")
        return None
    if len(matches) > 1:
        print(f"{prefix!r} matches {len(matches)} analyses; type more of the id.")
        return None
    return matches[0]


# -----------------------------
# Command handling
# -----------------------------

def handle_tree(session: AnalysisSession, store: AnalysisStore) -> None:
    if session.analysis is not None and session.analysis.tree_artifact:
        print("The tree for this analysis is already built. Use /new to start another one.")
        return
    if not session.can_request_tree:
        print(f"Talk a little more before building the tree "
              f"(about {SUGGESTED_MESSAGES_FOR_TREE} messages).")
        return

    print("[building the cause tree...]")
    analysis = session.request_tree()
    if analysis is None:
        print(f"whytree (error): {session.error}")
        session.clear_error()
        return

    print(render_tree(analysis.tree_artifact))
    if analysis.tree_artifact:
        if store.save(analysis):
            print("[saved]")
        else:
            print(f"whytree (storage error): {store.error}")


def handle_command(line: str, session: AnalysisSession, store: AnalysisStore) -> None:
    parts = line.split()
    cmd, args = parts[0].lower(), parts[1:]

    if cmd == "/help":
        print(HELP_TEXT)
    elif cmd == "/tree":
        handle_tree(session, store)
    elif cmd == "/new":
        session.reset_session()
        print("[new analysis] Tell me what is on your mind.")
    elif cmd == "/history":
        print(render_history(store))
    elif cmd == "/show":
        analysis = _resolve(store, args[0] if args else "")
        if analysis is not None:
            print(render_analysis(analysis))
    elif cmd == "/delete":
        analysis = _resolve(store, args[0] if args else "")
        if analysis is not None:
            if store.delete(analysis.id):
                print(f"[deleted {analysis.id[:8]}]")
            else:
                print(f"whytree (storage error): {store.error}")
    elif cmd == "/clear-history":
        confirm = input("Delete every saved analysis? [y/N] ").strip().lower()
        if confirm == "y":
            if store.clear():
                print("[history cleared]")
            else:
                print(f"whytree (storage error): {store.error}")
    elif cmd == "/export":
        if len(args) < 2:
            print("Usage: /export <id> <path>")
            return
        analysis = _resolve(store, args[0])
        if analysis is None:
            return
        if not analysis.tree_artifact:
            print("That analysis has no tree to export.")
            return
        out_path = Path(args[1])
        try:
            out_path.write_text(analysis.tree_artifact + "\n", encoding="utf-8")
        except OSError as e:
            print(f"whytree (error): could not write {out_path}: {e}")
            return
        print(f"[exported to {out_path}]")
    else:
        print(f"Unknown command {cmd!r}. Type /help.")


def run_chat(session: AnalysisSession, store: AnalysisStore) -> None:
    print("whytree - why-why analysis. Type /help for commands, 'exit' to quit.\n")
    print("Tell me about a problem or worry you have.\n")
    if store.error:
        print(f"whytree (storage error): {store.error}")

    while True:
        try:
            user = input("You: ").strip()
        except (EOFError, KeyboardInterrupt):
            print("\n[Session ended]")
            break

        if not user:
            continue
        if user.lower() in {"exit", "quit"}:
            print("Goodbye.")
            break
        if user.startswith("/"):
            handle_command(user, session, store)
            continue

        reply = session.send_message(user)
        if reply is None:
            print(f"whytree (error): {session.error}")
            session.clear_error()
            continue

        print(f"Counselor: {reply.content}\n")
        if session.can_request_tree:
            print("[tip] When you feel you have dug deep enough, type /tree.\n")


# -----------------------------
# CLI main
# -----------------------------

def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="whytree: guided why-why analysis with a cause-tree summary.")
    sub = p.add_subparsers(dest="command")

    chat = sub.add_parser("chat", help="Interactive analysis (default).")
    chat.add_argument("--api-base", default=None, help="Use a running whytree API instead of the model directly.")
    chat.add_argument("--data-dir", default=None, help="Directory for saved analyses.")
    chat.add_argument("--ephemeral", action="store_true", help="Do not write saved analyses to disk.")

    serve = sub.add_parser("serve", help="Run the HTTP API.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true")
    return p


def main(argv: Optional[list[str]] = None) -> None:
    args = build_parser().parse_args(argv)

    if args.command == "serve":
        import uvicorn

        uvicorn.run("whytree.api.server:app", host=args.host, port=args.port, reload=args.reload)
        return

    settings = load_settings()
    session = build_session(settings, api_base=getattr(args, "api_base", None))
    store = build_store(
        settings,
        data_dir=getattr(args, "data_dir", None),
        ephemeral=getattr(args, "ephemeral", False),
    )
    run_chat(session, store)


if __name__ == "__main__":
    main()
