#!/usr/bin/env python3
"""
datachat - Main Entry Point

Run this to chat about CSV tables, JSON record collections and images.

Usage:
    python main.py                          # Interactive mode
    python main.py --verbose                # Show routing and tool details
    python main.py --attach videos.json     # Start with a data file loaded
    python main.py --session ID             # Resume a stored session
    python main.py "what's the average views" --attach posts.csv

Commands:
    attach <path> - Load a CSV or JSON file as the chat's data
    image <path>  - Attach an image to the next message
    detach        - Remove the loaded data
    new           - Start a new chat
    sessions      - List saved sessions
    open <id>     - Resume a saved session
    delete <id>   - Delete a saved session
    errors        - Show recent errors from logs
    usage         - Show token usage so far
    help          - Show help message
    quit          - Exit the program

Press Ctrl-C during an answer to stop it; the partial answer is kept.
"""

import argparse
import mimetypes
import queue
import sys
import threading
from datetime import datetime
from pathlib import Path

# readline is optional (not available on Windows without pyreadline3)
try:
    import readline
    READLINE_AVAILABLE = True
except ImportError:
    READLINE_AVAILABLE = False

HISTORY_FILE = Path.home() / ".datachat_history"


def setup_readline():
    """Configure readline for input history."""
    if not READLINE_AVAILABLE:
        return
    readline.set_history_length(500)
    try:
        readline.read_history_file(HISTORY_FILE)
    except FileNotFoundError:
        pass


def print_welcome():
    """Print welcome message."""
    print("=" * 60)
    print("  datachat")
    print("=" * 60)
    print()
    print("Chat about your data. Attach a CSV or JSON file and ask away.")
    print()
    print("What I can do:")
    print("  Tabular questions - stats, filters, group-bys, top N, correlations")
    print("  Record questions  - stats, metric over time, pick a record")
    print("  Python analysis   - regressions, histograms, heatmaps (code execution)")
    print("  Web questions     - grounded answers with sources")
    print("  Images            - describe an image, or generate a new one from it")
    print()
    print("Examples:")
    print("  attach posts.csv")
    print("  'What's the average views?'")
    print("  'Plot engagement for the top 10 posts'")
    print("  'Run a regression of likes on views'")
    print()
    print("Commands: attach, image, detach, new, sessions, open, delete,")
    print("          errors, usage, help, quit")
    print("-" * 60)
    print()


def load_image(path: str):
    """Read an image file into an ImageAttachment."""
    from agent.messages import ImageAttachment

    p = Path(path).expanduser()
    mime_type = mimetypes.guess_type(p.name)[0] or "image/png"
    return ImageAttachment(p.read_bytes(), mime_type)


def save_generated_image(image, index: int) -> Path:
    """Write a generated image under <data_dir>/images and return its path."""
    import config

    out_dir = config.get_data_dir() / "images"
    out_dir.mkdir(parents=True, exist_ok=True)
    ext = mimetypes.guess_extension(image.mime_type) or ".png"
    path = out_dir / f"generated_{datetime.now().strftime('%Y%m%d_%H%M%S')}_{index}{ext}"
    path.write_bytes(image.data)
    return path


def print_final(snapshot, printed_text: bool):
    """Print everything a finished message carries besides streamed text."""
    from agent.prompts import format_card, format_chart

    if snapshot.parts:
        print()
        for part in snapshot.parts:
            if part.kind == "code":
                print(f"```{(part.language or 'python').lower()}\n{part.text}\n```")
            elif part.kind == "result":
                print(f"[Output] {part.text}")
            elif part.kind == "image":
                print(f"[Image: {part.mime_type}, {len(part.data or b'')} bytes]")
            elif not printed_text:
                print(part.text)
    elif not printed_text and snapshot.content:
        print(snapshot.content)

    for chart in snapshot.charts:
        print(format_chart(chart))
    for card in snapshot.cards:
        print(format_card(card))
    for i, image in enumerate(snapshot.generated_images):
        print(f"[Generated image saved to {save_generated_image(image, i)}]")
    if snapshot.grounding:
        footer = snapshot.grounding.sources_footer()
        if footer:
            print(footer.lstrip("\n"))
    if snapshot.status.value not in ("done", "failed"):
        print(f"[{snapshot.status.value.replace('_', ' ')}]")


def run_turn(agent, text: str, images=None):
    """Run one turn on a worker thread, printing snapshots as they arrive.

    Ctrl-C sets the agent's cancel flag; the turn stops at the next chunk
    or tool round and the partial answer is kept.
    """
    updates: queue.Queue = queue.Queue()

    def worker():
        try:
            for snapshot in agent.send(text, images):
                updates.put(snapshot)
        except Exception as e:
            updates.put(e)
        finally:
            updates.put(None)

    thread = threading.Thread(target=worker, daemon=True)
    thread.start()

    print("Agent: ", end="", flush=True)
    printed_text = False
    final = None
    while True:
        try:
            item = updates.get(timeout=0.1)
        except queue.Empty:
            continue
        except KeyboardInterrupt:
            agent.request_cancel()
            print("\n[Stopping...]", flush=True)
            continue
        if item is None:
            break
        if isinstance(item, Exception):
            print(f"\nError: {item}")
            break
        if item.delta:
            print(item.delta, end="", flush=True)
            printed_text = True
        if item.is_final:
            final = item
    if printed_text:
        print()
    if final is not None:
        print_final(final, printed_text)
    print()
    thread.join()
    return final


def print_usage(agent):
    usage = agent.get_token_usage()
    print("-" * 60)
    print(f"  Tokens: {usage['total_tokens']:,} (in: {usage['input_tokens']:,}, out: {usage['output_tokens']:,})")
    print(f"  API calls: {usage['api_calls']}")
    print("-" * 60)


def print_sessions(agent):
    sessions = agent.list_sessions()[:10]
    if not sessions:
        print("No saved sessions.")
        return
    print(f"Saved sessions (most recent {len(sessions)}):")
    for s in sessions:
        sid = s["id"]
        count = s.get("message_count", 0)
        title = s.get("title", "")[:40]
        updated = s.get("updated_at", "")[:19]
        current = " (current)" if sid == agent.session_id else ""
        print(f"  {sid}  {count} messages  {updated}  {title}{current}")


def attach(agent, path: str) -> bool:
    from data_ops.tabular import ParseError

    try:
        descriptor = agent.attach_file(Path(path).expanduser())
    except (ParseError, OSError, UnicodeDecodeError) as e:
        print(f"Could not load {path}: {e}")
        return False
    unit = "rows" if descriptor["kind"] == "csv" else "records"
    print(f"Loaded {descriptor['name']} ({descriptor['size']} {unit})")
    return True


def main():
    """Main conversation loop."""
    parser = argparse.ArgumentParser(description="datachat")
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show routing and tool execution details",
    )
    parser.add_argument(
        "--provider", "-p",
        choices=["gemini", "openai", "anthropic"],
        default=None,
        help="LLM provider (default: llm_provider from config.json)",
    )
    parser.add_argument(
        "--model", "-m",
        default=None,
        help="Chat model name (default: provider default)",
    )
    parser.add_argument(
        "--user", "-u",
        default=None,
        help="User display name (also the session owner)",
    )
    parser.add_argument(
        "--session", "-s",
        default=None,
        help="Resume a specific session by ID",
    )
    parser.add_argument(
        "--attach", "-a",
        action="append",
        default=[],
        help="CSV or JSON file to load (repeatable; the last one wins)",
    )
    parser.add_argument(
        "--image", "-i",
        action="append",
        default=[],
        help="Image to attach to the first message (repeatable)",
    )
    parser.add_argument(
        "command",
        nargs="?",
        default=None,
        help="Single message to send (non-interactive mode)",
    )
    args = parser.parse_args()

    if not args.command:
        setup_readline()
        print_welcome()

    from agent.core import create_agent

    try:
        agent = create_agent(
            verbose=args.verbose, provider=args.provider, model=args.model, user_name=args.user,
        )
    except ValueError as e:
        print(f"Error initializing agent: {e}")
        print()
        print("Troubleshooting:")
        print("  1. Set GOOGLE_API_KEY, OPENAI_API_KEY or ANTHROPIC_API_KEY in .env")
        print("  2. Check llm_provider in ~/.datachat/config.json")
        sys.exit(1)

    if args.session:
        try:
            history = agent.open_session(args.session)
            print(f"Resumed session: {args.session} ({len(history)} messages)")
        except FileNotFoundError:
            print(f"Session not found: {args.session}")
            print("Starting new session.")

    for path in args.attach:
        attach(agent, path)

    try:
        pending_images = [load_image(p) for p in args.image]
    except OSError as e:
        print(f"Could not read image: {e}")
        sys.exit(1)

    # Single command mode (non-interactive)
    if args.command:
        print(f"You: {args.command}\n")
        run_turn(agent, args.command, pending_images)
        usage = agent.get_token_usage()
        if usage["api_calls"] > 0:
            print_usage(agent)
        sys.stdout.flush()
        return

    print(f"Model: {agent.settings.provider}/{agent.model}")
    print("Agent ready. Type your request:\n")

    while True:
        try:
            user_input = input("You: ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nGoodbye!")
            break

        if not user_input:
            continue

        command, _, arg = user_input.partition(" ")
        command = command.lower()
        arg = arg.strip()

        if command in ("quit", "exit", "q"):
            print("Goodbye!")
            break

        if command == "help":
            print_welcome()
            continue

        if command == "attach" and arg:
            attach(agent, arg)
            print()
            continue

        if command == "image" and arg:
            try:
                pending_images.append(load_image(arg))
                print(f"Image attached to your next message ({len(pending_images)} total).\n")
            except OSError as e:
                print(f"Could not read image: {e}\n")
            continue

        if command == "detach":
            agent.detach()
            print("Data removed.\n")
            continue

        if command == "new":
            agent.new_session()
            pending_images = []
            print("New chat started.\n")
            continue

        if command == "sessions":
            print_sessions(agent)
            print()
            continue

        if command == "open" and arg:
            try:
                history = agent.open_session(arg)
                print(f"Resumed session: {arg} ({len(history)} messages)")
                for msg in history[-4:]:
                    print(f"  {msg.role}: {msg.content[:80]}")
            except FileNotFoundError:
                print(f"Session not found: {arg}")
            print()
            continue

        if command == "delete" and arg:
            print("Deleted." if agent.delete_session(arg) else f"Session not found: {arg}")
            print()
            continue

        if command == "errors":
            from agent.logging import print_recent_errors
            print_recent_errors(days=7, limit=10)
            print()
            continue

        if command == "usage":
            print_usage(agent)
            print()
            continue

        print()
        run_turn(agent, user_input, pending_images)
        pending_images = []

    usage = agent.get_token_usage()
    if usage["api_calls"] > 0:
        print()
        print_usage(agent)

    if READLINE_AVAILABLE:
        readline.write_history_file(HISTORY_FILE)
    sys.stdout.flush()


if __name__ == "__main__":
    main()
