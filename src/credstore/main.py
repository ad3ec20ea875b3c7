#!/usr/bin/env python3
"""Credstore CLI - Generate, fetch and delete secrets in an encrypted store.

Examples:
    credstore -k db-prod                 # generate, store, copy to clipboard
    credstore -k db-prod -m get          # print the stored value
    credstore -k db-prod -m del          # remove it
    credstore -m list                    # list keys
"""

import argparse
import os
import secrets
import signal
import string
import subprocess
import sys

from . import __version__
from .bootstrap import ensure_key_pair_exists, ensure_store_exists
from .errors import CredstoreError, DuplicateKeyError, KeyNotFoundError
from .store import StoreConfig, TransactionManager

# Exit codes
EXIT_OK = 0
EXIT_ERROR = 1
EXIT_DUPLICATE = 3
EXIT_NOT_FOUND = 4
EXIT_INTERRUPTED = 130

MODES = ("new", "get", "del", "list")
ALPHABET = string.ascii_letters + string.digits


def get_store_config(args) -> StoreConfig:
    """Resolve paths and lengths from args, environment and defaults."""
    return StoreConfig.from_env(
        store_path=args.path,
        pubkey_path=args.pubkey,
        identity_path=args.identity,
        record_length=args.length,
        audit_log_path=args.audit_log,
    )


def confirm(prompt: str, assume_yes: bool = False) -> bool:
    """Ask a yes/no question.

    CREDSTORE_ASSUME_YES=1 answers yes for automation/testing. Without a
    terminal the answer is no.
    """
    if assume_yes or os.environ.get("CREDSTORE_ASSUME_YES") == "1":
        return True
    if not sys.stdin.isatty():
        return False
    answer = input(f"{prompt} [y/N] ")
    return answer.strip().lower() in ("y", "yes")


def generate_secret(length: int) -> str:
    """Generate a random secret, using pwgen when it is installed."""
    try:
        proc = subprocess.run(
            ["pwgen", "-s", str(length), "1"],
            capture_output=True,
            text=True,
        )
        candidate = proc.stdout.strip()
        if proc.returncode == 0 and len(candidate) == length and candidate.isalnum():
            return candidate
    except FileNotFoundError:
        pass

    return "".join(secrets.choice(ALPHABET) for _ in range(length))


def clipboard_command():
    """Return the clipboard tool argv for this platform, or None."""
    if sys.platform == "darwin":
        return ["pbcopy"]
    if not os.path.exists("/proc/version"):
        return None

    with open("/proc/version") as f:
        kernel = f.read().lower()
    if "microsoft" in kernel or "wsl" in kernel:
        return ["clip.exe"]
    if os.environ.get("WAYLAND_DISPLAY"):
        return ["wl-copy"]
    return ["xclip", "-selection", "clipboard"]


def copy_to_clipboard(text) -> bool:
    """Hand text to the clipboard tool. Returns False when nothing was copied."""
    cmd = clipboard_command()
    if cmd is None:
        print("(no clipboard tool available)", file=sys.stderr)
        return False

    try:
        proc = subprocess.run(cmd, input=text.encode("utf-8"), capture_output=True)
    except FileNotFoundError:
        print(f"({cmd[0]} not found)", file=sys.stderr)
        return False

    if proc.returncode != 0:
        print(f"({cmd[0]} exited with {proc.returncode})", file=sys.stderr)
        return False
    print("(copied to clipboard)", file=sys.stderr)
    return True


def bootstrap(config: StoreConfig, assume_yes: bool = False) -> None:
    """Create a missing key pair and/or store after confirmation."""
    if not config.pubkey_path.exists():
        if not confirm(f"No public key at {config.pubkey_path}. Create a new key pair?", assume_yes):
            print(f"Public key not found: {config.pubkey_path}", file=sys.stderr)
            sys.exit(EXIT_ERROR)

    recipient = ensure_key_pair_exists(config.pubkey_path, config.identity_path)

    if not config.store_path.exists():
        if not confirm(f"No store at {config.store_path}. Create an empty one?", assume_yes):
            print(f"Store not found: {config.store_path}", file=sys.stderr)
            sys.exit(EXIT_ERROR)
        ensure_store_exists(config.store_path, recipient)
        print(f"Store created at {config.store_path}", file=sys.stderr)


def cmd_new(args, manager):
    """Generate a secret for a new key."""
    config = manager.config
    bootstrap(config, args.yes)

    secret = generate_secret(config.record_length)
    manager.put(args.key, secret)

    if args.show or not copy_to_clipboard(secret):
        print(secret)


def cmd_get(args, manager):
    """Print a stored secret with no trailing newline."""
    sys.stdout.write(manager.get(args.key))
    sys.stdout.flush()


def cmd_del(args, manager):
    """Delete a key; deleting a missing key succeeds."""
    manager.delete(args.key)


def cmd_list(args, manager):
    """List keys."""
    for key in manager.list_keys():
        print(key)


def _terminate(signum, frame):
    # Unwind through finally blocks so plaintext workspaces are wiped
    raise SystemExit(128 + signum)


def install_signal_handlers():
    for signum in (signal.SIGTERM, signal.SIGHUP):
        signal.signal(signum, _terminate)


def build_parser():
    parser = argparse.ArgumentParser(
        prog='credstore',
        description="Credstore - encrypted single-file credential store"
    )
    parser.add_argument(
        '--version',
        action='version',
        version=f"%(prog)s {__version__}"
    )
    parser.add_argument('-k', dest='key', metavar='KEY', help='Record key (required except for list)')
    parser.add_argument('-p', dest='path', metavar='STORE_PATH', help='Path to store file (default: ~/.credstore)')
    parser.add_argument('-f', dest='pubkey', metavar='PUBKEY_PATH', help='Path to public key (default: ~/.credstore.pub)')
    parser.add_argument('-i', dest='identity', metavar='IDENTITY_PATH', help='Path to private key (default: ~/.credstore.key)')
    parser.add_argument('-l', dest='length', metavar='GENERATED_LENGTH', type=int, help='Length of generated secrets (default: 20)')
    parser.add_argument('-m', dest='mode', metavar='MODE', choices=MODES, default='new', help='One of: new, get, del, list (default: new)')
    parser.add_argument('--show', action='store_true', help='Print generated secret instead of copying it')
    parser.add_argument('--yes', action='store_true', help='Create missing key pair/store without asking')
    parser.add_argument('--audit-log', dest='audit_log', metavar='LOG_PATH', help='Append transactions to this log')
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.mode != 'list' and not args.key:
        parser.error("the following arguments are required: -k")
    if args.length is not None and args.length < 1:
        parser.error("-l must be a positive integer")

    install_signal_handlers()

    commands = {
        'new': cmd_new,
        'get': cmd_get,
        'del': cmd_del,
        'list': cmd_list,
    }

    try:
        config = get_store_config(args)
    except ValueError as e:
        parser.error(f"invalid configuration: {e}")

    try:
        manager = TransactionManager(config)
        commands[args.mode](args, manager)
    except DuplicateKeyError as e:
        print(f"{e}. Delete it first to replace it.", file=sys.stderr)
        sys.exit(EXIT_DUPLICATE)
    except KeyNotFoundError:
        sys.exit(EXIT_NOT_FOUND)
    except CredstoreError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(EXIT_ERROR)
    except OSError as e:
        print(f"I/O error: {e}", file=sys.stderr)
        sys.exit(EXIT_ERROR)
    except KeyboardInterrupt:
        sys.exit(EXIT_INTERRUPTED)

    sys.exit(EXIT_OK)


if __name__ == '__main__':
    main()
