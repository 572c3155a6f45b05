import argparse
import asyncio
import logging
import os
import signal
import sys
from datetime import timezone
from pathlib import Path

from streamscribe.config import CONFIG_DIR, StreamscribeConfig
from streamscribe.log_format import configure_logging

ENV_FILE_PATH = CONFIG_DIR / "env"

logger = logging.getLogger("streamscribe")


def _load_env_file(path: Path = ENV_FILE_PATH) -> None:
    if not path.exists():
        return
    with open(path) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" not in line:
                continue
            key, _, value = line.partition("=")
            key = key.strip()
            value = value.strip().strip("'\"")
            if key not in os.environ:
                os.environ[key] = value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Push-to-talk dictation with live transcription")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")

    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("toggle", help="Start or stop recording in the running daemon")
    subparsers.add_parser("status", help="Query daemon status")

    key_parser = subparsers.add_parser("key", help="Manage the Deepgram API key")
    key_actions = key_parser.add_subparsers(dest="key_action", required=True)
    key_set = key_actions.add_parser("set", help="Store the API key")
    key_set.add_argument("value", help="Deepgram API key")
    key_actions.add_parser("delete", help="Remove the stored API key")
    key_actions.add_parser("show", help="Show whether a key is stored")

    history_parser = subparsers.add_parser("history", help="List past sessions")
    history_parser.add_argument("--errors-only", action="store_true", help="Only sessions with errors")
    history_parser.add_argument("--search", default="", help="Filter by transcript text")

    return parser


def main(argv: list[str] | None = None) -> None:
    _load_env_file()
    args = build_parser().parse_args(argv)

    config = StreamscribeConfig()
    daemon = args.command is None
    configure_logging(verbose=args.verbose, log_file=config.log_file if daemon else "")

    if args.command in ("toggle", "status"):
        asyncio.run(_run_client_command(args, config))
    elif args.command == "key":
        _run_key_command(args, config)
    elif args.command == "history":
        _run_history_command(args, config)
    else:
        asyncio.run(_run_daemon(config))


async def _run_client_command(args: argparse.Namespace, config: StreamscribeConfig) -> None:
    from streamscribe.adapters.unix_control import UnixSocketControlClient

    client = UnixSocketControlClient(socket_path=config.socket_path)

    try:
        result = await client.send_command(args.command)
    except (ConnectionRefusedError, FileNotFoundError):
        print("streamscribe is not running", file=sys.stderr)
        sys.exit(1)

    if result.get("status") == "error":
        print(result.get("message", "error"), file=sys.stderr)
        sys.exit(1)
    print(f"{result.get('state', '?')}: {result.get('message', '')}")


def _run_key_command(args: argparse.Namespace, config: StreamscribeConfig) -> None:
    from streamscribe.adapters.secret_store import FileSecretStore
    from streamscribe.ports.collaborators import DEEPGRAM_API_KEY_NAME

    store = FileSecretStore(config.secrets_dir)
    if args.key_action == "set":
        if not args.value.strip():
            print("API key must not be empty", file=sys.stderr)
            sys.exit(1)
        store.put(DEEPGRAM_API_KEY_NAME, args.value)
        print("API key saved")
    elif args.key_action == "delete":
        store.delete(DEEPGRAM_API_KEY_NAME)
        print("API key removed")
    else:
        key = store.get(DEEPGRAM_API_KEY_NAME)
        if key:
            print(f"API key stored ({key[:4]}...{key[-4:]})" if len(key) > 8 else "API key stored")
        else:
            print("No API key stored")


def _run_history_command(args: argparse.Namespace, config: StreamscribeConfig) -> None:
    from streamscribe.adapters.history_store import JsonHistoryStore

    store = JsonHistoryStore(config.history_file)
    records = store.filtered(search_text=args.search, errors_only=args.errors_only)
    for record in records:
        started = record.started_at.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        marker = " !" if record.errors else ""
        print(f"{started}  {record.duration_seconds:6.1f}s{marker}  {record.display_text}")
        for error in record.errors:
            print(f"    [{error.phase}] {error.message}")
    print(
        f"{store.total_sessions} sessions, "
        f"{store.total_recording_time:.1f}s recorded, "
        f"{store.average_session_length:.1f}s average"
    )


async def _run_daemon(config: StreamscribeConfig) -> None:
    from streamscribe.factory import create_controller
    from streamscribe.health import has_critical_failures, run_startup_checks

    results = run_startup_checks(config)
    if has_critical_failures(results):
        logger.error("Critical health check failures, aborting startup")
        sys.exit(1)

    controller, control, hotkey = create_controller(config)

    shutdown_event = asyncio.Event()
    shutdown_triggered = False

    def handle_signal() -> None:
        nonlocal shutdown_triggered
        if shutdown_triggered:
            logger.warning("Forced exit")
            sys.exit(1)
        shutdown_triggered = True
        logger.info("Shutting down...")
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal)

    await control.start()
    try:
        hotkey.start(loop, controller.toggle_recording)
    except RuntimeError as exc:
        logger.warning("Hotkey disabled: %s", exc)

    def status_reply(action: str) -> dict:
        return {
            "status": "ok",
            "action": action,
            "state": controller.state.name,
            "message": controller.status,
            "preview": controller.live_preview,
        }

    async def control_loop() -> None:
        async for cmd in control.commands():
            if cmd.action == "toggle":
                controller.toggle_recording()
                cmd.respond(status_reply(cmd.action))
            elif cmd.action == "status":
                cmd.respond(status_reply(cmd.action))
            else:
                cmd.respond({"status": "error", "action": cmd.action, "message": "unknown action"})

    control_task = asyncio.create_task(control_loop())
    logger.info("Ready, press %s or run 'streamscribe toggle' to dictate", config.hotkey)

    try:
        await shutdown_event.wait()
    finally:
        hotkey.stop()
        control_task.cancel()
        try:
            await asyncio.wait_for(controller.shutdown(), timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning("Session did not shut down in time")
        try:
            await asyncio.wait_for(control_task, timeout=1.0)
        except (asyncio.CancelledError, asyncio.TimeoutError):
            pass
        await control.stop()


if __name__ == "__main__":
    main()
