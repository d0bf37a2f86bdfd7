from __future__ import annotations

import argparse
import json
import signal
import sys
import threading
from datetime import timedelta
from typing import Callable, List, Optional

from sandctl import __version__
from sandctl.config import Settings, get_settings
from sandctl.exceptions import ProvisioningError, SandctlError
from sandctl.lifecycle import sync_sessions
from sandctl.models import AnySession, parse_duration, utc_now
from sandctl.providers.registry import list_providers
from sandctl.service import boot_check_for, build_services, create_options_for
from sandctl.store import SessionStore
from sandctl.telemetry import configure_logging


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="sandctl", description="Manage sandboxed development VMs."
    )
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging."
    )
    sub = parser.add_subparsers(dest="command", required=True)

    new = sub.add_parser("new", help="Provision a new sandbox VM.")
    new.add_argument(
        "-t", "--timeout", help="Auto-destroy after this long (e.g. 30m, 2h)."
    )
    new.add_argument(
        "--provider", help=f"Provider name ({', '.join(list_providers())})."
    )
    new.add_argument("--region", help="Provider region override.")
    new.add_argument("--server-type", help="Server type override.")
    new.add_argument("--image", help="Image override.")
    new.add_argument(
        "--no-wait-boot",
        action="store_true",
        help="Do not wait for cloud-init setup to finish.",
    )

    ls = sub.add_parser("list", help="List sessions.")
    ls.add_argument(
        "-a", "--all", action="store_true", help="Include stopped and failed sessions."
    )
    ls.add_argument("--json", action="store_true", help="Print JSON.")
    ls.add_argument(
        "--sync", action="store_true", help="Refresh status from providers first."
    )

    show = sub.add_parser("show", help="Show one session as JSON.")
    show.add_argument("name")

    destroy = sub.add_parser("destroy", help="Destroy a session and its VM.")
    destroy.add_argument("name")
    destroy.add_argument(
        "-f", "--force", action="store_true", help="Skip the confirmation prompt."
    )

    return parser.parse_args(argv)


def _prompt_line(prompt: str) -> str:
    # Prompts go to stderr to keep stdout clean for JSON output.
    print(prompt, file=sys.stderr, end="")
    try:
        return input().strip()
    except EOFError:
        return ""


def _confirm(prompt: str) -> bool:
    return _prompt_line(f"{prompt} [y/N]: ").lower() in {"y", "yes"}


def _format_age(age: timedelta) -> str:
    seconds = max(int(age.total_seconds()), 0)
    if seconds < 60:
        return f"{seconds}s"
    minutes, _ = divmod(seconds, 60)
    if minutes < 60:
        return f"{minutes}m"
    hours, minutes = divmod(minutes, 60)
    if hours < 24:
        return f"{hours}h{minutes}m"
    days, hours = divmod(hours, 24)
    return f"{days}d{hours}h"


def _provider_label(session: AnySession) -> str:
    return "(legacy)" if session.is_legacy else session.provider_name


def _address(session: AnySession) -> str:
    return "" if session.is_legacy else session.network_address


def _install_cancel_handler(cancel: threading.Event) -> Callable[[], None]:
    """Route Ctrl-C to the cancel event. Returns a function restoring the old handler."""
    if threading.current_thread() is not threading.main_thread():
        return lambda: None

    def _on_sigint(signum, frame) -> None:
        print("\nCancelling, cleaning up...", file=sys.stderr)
        cancel.set()

    previous = signal.signal(signal.SIGINT, _on_sigint)
    return lambda: signal.signal(signal.SIGINT, previous)


def _cmd_new(args: argparse.Namespace, settings: Settings) -> int:
    timeout = None
    if args.timeout:
        try:
            timeout = parse_duration(args.timeout)
        except ValueError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 1
        if timeout <= timedelta(0):
            print(f"Error: timeout must be positive, got {args.timeout}", file=sys.stderr)
            return 1

    services = build_services(settings)
    try:
        provider = services.resolver(args.provider or settings.default_provider)
        options = create_options_for(
            provider,
            settings,
            region=args.region,
            server_type=args.server_type,
            image=args.image,
        )
        boot_check = boot_check_for(
            settings, wait_for_boot=False if args.no_wait_boot else None
        )

        cancel = threading.Event()
        restore = _install_cancel_handler(cancel)
        try:
            session = services.workflow.provision(
                provider,
                options,
                timeout=timeout,
                ready_timeout=settings.ready_timeout,
                boot_check=boot_check,
                boot_timeout=settings.boot_timeout,
                cancel=cancel,
            )
        finally:
            restore()
    except ProvisioningError as exc:
        name = exc.session.id if exc.session is not None else "session"
        print(f"Error: {name}: {exc}", file=sys.stderr)
        return 1
    finally:
        services.close()

    print(f"Session created: {session.id}")
    print(f"  Provider: {session.provider_name}")
    print(f"  IP:       {session.network_address}")
    if session.timeout is not None:
        print(f"  Timeout:  {args.timeout}")
    print(f"\nConnect with: ssh {settings.ssh_user}@{session.network_address}")
    return 0


def _cmd_list(args: argparse.Namespace, settings: Settings) -> int:
    store = SessionStore(settings.sessions_path)
    if args.sync:
        services = build_services(settings, store=store)
        try:
            sync_sessions(store, services.resolver)
        finally:
            services.close()

    sessions = store.list() if args.all else store.list_active()

    if args.json:
        print(json.dumps([s.to_record() for s in sessions], indent=2))
        return 0

    if not sessions:
        print("No sessions. Create one with 'sandctl new'.")
        return 0

    now = utc_now()
    rows = [("NAME", "PROVIDER", "STATUS", "IP", "AGE", "TIMEOUT")]
    for session in sessions:
        remaining = session.timeout_remaining(now)
        rows.append(
            (
                session.id,
                _provider_label(session),
                session.status.value,
                _address(session) or "-",
                _format_age(session.age(now)),
                "-" if remaining is None else _format_age(remaining),
            )
        )
    widths = [max(len(row[i]) for row in rows) for i in range(len(rows[0]))]
    for row in rows:
        print("  ".join(cell.ljust(width) for cell, width in zip(row, widths)).rstrip())
    return 0


def _cmd_show(args: argparse.Namespace, settings: Settings) -> int:
    store = SessionStore(settings.sessions_path)
    session = store.get(args.name)
    record = session.to_record()
    record["legacy"] = session.is_legacy
    print(json.dumps(record, indent=2))
    return 0


def _cmd_destroy(args: argparse.Namespace, settings: Settings) -> int:
    services = build_services(settings)
    try:
        session = services.store.get(args.name)
        if session.is_legacy and not args.force:
            print(
                f"Error: session '{session.id}' is from an old version of sandctl. "
                "Use --force to remove it locally; any VM must be deleted by hand.",
                file=sys.stderr,
            )
            return 1

        confirmed = args.force or _confirm(f"Destroy session '{session.id}'?")
        if not confirmed:
            print("Aborted.", file=sys.stderr)
            return 1

        result = services.teardown.destroy(session.id, force_confirm=True)
    finally:
        services.close()

    print(f"Session '{result.session_id}' destroyed.")
    if not result.local_removed:
        print(
            "Warning: the local record could not be removed; "
            f"run 'sandctl destroy {result.session_id}' again.",
            file=sys.stderr,
        )
    return 0


_COMMANDS = {
    "new": _cmd_new,
    "list": _cmd_list,
    "show": _cmd_show,
    "destroy": _cmd_destroy,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    try:
        settings = get_settings()
        configure_logging("DEBUG" if args.verbose else settings.log_level)
        return _COMMANDS[args.command](args, settings)
    except SandctlError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
