from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .api import create_server
from .config import Settings, load_settings
from .interfaces import local_device_info, local_mac_candidates
from .oui import VendorLabels
from .service import OperationResult, WhitelistService, build_service


def _configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(message)s",
        handlers=[RichHandler(show_path=False)],
    )


def _build_table() -> Table:
    t = Table(title="mac-whitelist", show_lines=False)
    t.add_column("MAC", style="bold")
    t.add_column("Manufacturer")
    t.add_column("Description")
    t.add_column("Tier")
    t.add_column("Added")
    t.add_column("Last seen")
    t.add_column("Accesses", justify="right")
    return t


def _report(console: Console, result: OperationResult) -> int:
    style = "green" if result.success else "red"
    console.print(f"[{style}]{result.message}[/{style}]")
    return 0 if result.success else 1


def cmd_list(args: argparse.Namespace, service: WhitelistService, console: Console) -> int:
    result = service.list_macs(admin_key=service.settings.admin_key, ip="cli")
    if not result.success:
        return _report(console, result)

    entries = result.data["macAddresses"]
    stats = result.data["statistics"]

    if args.json:
        out = json.dumps(result.data, indent=2)
        if args.json == "-":
            console.print_json(out)
        else:
            Path(args.json).write_text(out, encoding="utf-8")
            console.print(f"[dim]Saved:[/dim] {args.json}")
        return 0

    vendors = VendorLabels()
    table = _build_table()
    for e in entries:
        table.add_row(
            e["macAddress"],
            vendors.label(e["macAddress"]),
            e["description"],
            e["accessType"],
            e["addedAt"] or "",
            e["lastSeen"] or "never",
            str(e["accessCount"]),
        )

    console.print(
        f"Total: [bold]{stats['total']}[/bold]  |  "
        f"Active 24h: [bold]{stats['activeLast24h']}[/bold]  |  "
        f"Active 7d: [bold]{stats['activeLast7d']}[/bold]  |  "
        f"Never used: [bold]{stats['neverUsed']}[/bold]  |  "
        f"Accesses: [bold]{stats['totalAccesses']}[/bold]"
    )
    console.print(table)
    return 0


def cmd_add(args: argparse.Namespace, service: WhitelistService, console: Console) -> int:
    key = service.settings.admin_key
    return _report(console, service.add_mac(args.mac, args.description, args.tier, admin_key=key, ip="cli"))


def cmd_remove(args: argparse.Namespace, service: WhitelistService, console: Console) -> int:
    key = service.settings.admin_key
    return _report(console, service.remove_mac(args.mac, admin_key=key, ip="cli"))


def cmd_set_tier(args: argparse.Namespace, service: WhitelistService, console: Console) -> int:
    key = service.settings.admin_key
    return _report(console, service.update_access(args.mac, args.tier, admin_key=key, ip="cli"))


def cmd_check(args: argparse.Namespace, service: WhitelistService, console: Console) -> int:
    candidates = args.mac or local_mac_candidates()
    if not candidates:
        console.print("[red]No hardware addresses found on this machine.[/red]")
        return 2

    console.print(f"[dim]Candidates:[/dim] {', '.join(candidates)}")
    result = service.check_access(candidates, local_device_info(), ip="cli")
    if result.success:
        entry = result.data["entry"]
        console.print(
            f"[green]Authorized[/green] {entry['macAddress']} "
            f"({entry['accessType']}, {entry['accessCount']} accesses)"
        )
        return 0
    return _report(console, result)


def cmd_serve(args: argparse.Namespace, service: WhitelistService, console: Console) -> int:
    server = create_server(service, host=args.host, port=args.port)
    console.print(f"Serving on {args.host}:{args.port}")
    try:
        server.serve_forever()
    finally:
        server.server_close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="mac-whitelist")
    sub = p.add_subparsers(dest="cmd", required=True)

    serve_cmd = sub.add_parser("serve", help="Run the HTTP API")
    serve_cmd.add_argument("--host", default="0.0.0.0")
    serve_cmd.add_argument("--port", type=int, default=8080)
    serve_cmd.set_defaults(func=cmd_serve)

    list_cmd = sub.add_parser("list", help="Show the whitelist with statistics")
    list_cmd.add_argument("--json", metavar="PATH", help="Write JSON to PATH ('-' for stdout)")
    list_cmd.set_defaults(func=cmd_list)

    add_cmd = sub.add_parser("add", help="Whitelist a MAC address")
    add_cmd.add_argument("mac")
    add_cmd.add_argument("description")
    add_cmd.add_argument("--tier", default="trial", choices=["trial", "unlimited", "admin"])
    add_cmd.set_defaults(func=cmd_add)

    remove_cmd = sub.add_parser("remove", help="Remove a MAC address")
    remove_cmd.add_argument("mac")
    remove_cmd.set_defaults(func=cmd_remove)

    tier_cmd = sub.add_parser("set-tier", help="Change a MAC address's access tier")
    tier_cmd.add_argument("mac")
    tier_cmd.add_argument("tier", choices=["trial", "unlimited", "admin"])
    tier_cmd.set_defaults(func=cmd_set_tier)

    check_cmd = sub.add_parser("check", help="Check this machine (or given addresses) against the whitelist")
    check_cmd.add_argument("--mac", action="append", help="Candidate address (repeatable)")
    check_cmd.set_defaults(func=cmd_check)

    return p


def main() -> None:
    console = Console()
    try:
        parser = build_parser()
        args = parser.parse_args()
        settings = load_settings()
        _configure_logging(settings)
        service = build_service(settings)
        try:
            code = args.func(args, service, console)
        finally:
            service.close()
        raise SystemExit(code)
    except KeyboardInterrupt:
        raise SystemExit(2)
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        raise SystemExit(2)
