#!/usr/bin/env python3
import os
import sys
import argparse

from .config import CONFIG, debug_log, init_config
from .errors import TransportError


def check_python_version():
    if sys.version_info < (3, 7):
        print("Python 3.7 or newer is required.")
        sys.exit(1)


def _get_app_version():
    try:
        v_file = os.path.join(os.path.dirname(__file__), "VERSION")
        with open(v_file) as f:
            return f.read().strip()
    except OSError:
        return "1.0.0"


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='Watch listening ports and kill the processes behind them')
    parser.add_argument("--version", action="version", version=f'portwarden {_get_app_version()}')
    parser.add_argument('--interval', type=float, help='Seconds between inventory polls (default 2)')
    parser.add_argument('--query', type=str, default='', help='Start with this search query')
    parser.add_argument('--port', type=int, help='Start focused on a specific port')
    parser.add_argument('--export', choices=['json', 'csv'], help='Print the current port list and exit')
    return parser.parse_args(argv)


def run_export(fmt, inventory=None, out=None):
    """One-shot export to stdout, no UI."""
    from .export import render
    from .inventory import PsutilInventory

    out = out or sys.stdout
    inventory = inventory or PsutilInventory()
    try:
        snapshot = inventory.fetch_inventory()
    except TransportError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    out.write(render(snapshot.entries, fmt))
    return 0


def cli_entry(argv=None):
    """terminal command 'portwarden' entry point"""
    check_python_version()
    init_config()
    args = parse_args(argv)

    if args.interval:
        CONFIG["poll_interval"] = max(0.2, args.interval)

    if args.export:
        sys.exit(run_export(args.export))

    import curses
    from . import tui
    debug_log(f"MAIN: Starting portwarden {_get_app_version()}")
    curses.wrapper(tui.main, args)
