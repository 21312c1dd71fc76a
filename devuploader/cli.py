from __future__ import annotations

import argparse
import asyncio
import logging
import socket
from typing import List, Optional

import asyncssh
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress

from . import __version__
from .config import ConfigurationError, UploadPair, WatchSettings, validate_upload_pairs
from .ssh_client import SFTPConnection, SSHClientConfig
from .utils import DEFAULT_CONNECTIONS, DEFAULT_DEBOUNCE_MS
from .watch import PreparedWatcher, Watcher

console = Console()
logger = logging.getLogger("devuploader")


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )
    # asyncssh logs every channel open at INFO
    logging.getLogger("asyncssh").setLevel(logging.DEBUG if verbose else logging.WARNING)


def handle_error(e: BaseException) -> int:
    """Print errors as short, user-friendly messages"""
    error_str = str(e)

    if isinstance(e, ConfigurationError):
        console.print("⚙️ Configuration Error", style="bold red")
        console.print(f"   {error_str}", style="red")
        console.print("💡 Try:", style="cyan")
        console.print("   • Check that every source directory exists", style="cyan")
        console.print("   • Use the format -u <source>:<destination>", style="cyan")
        return 1

    if isinstance(e, (ConnectionError, asyncio.TimeoutError, socket.gaierror)) or any(keyword in error_str.lower() for keyword in ["connection", "network", "timeout", "unreachable", "getaddrinfo failed", "no route to host"]):
        console.print("🌐 Connection Error", style="bold red")
        console.print("   Network connection failed", style="red")
        console.print("💡 Try:", style="cyan")
        console.print("   • Verify the server address and port", style="cyan")
        console.print("   • Test with: ssh user@host", style="cyan")
        return 1

    if isinstance(e, asyncssh.PermissionDenied) or any(keyword in error_str.lower() for keyword in ["authentication", "permission denied", "access denied"]):
        console.print("🔐 Authentication Error", style="bold red")
        console.print("   The server rejected the login", style="red")
        console.print("💡 Try:", style="cyan")
        console.print("   • Load your key into ssh-agent or add it to ~/.ssh/config", style="cyan")
        console.print("   • Test manually: ssh user@host", style="cyan")
        return 1

    if isinstance(e, asyncssh.HostKeyNotVerifiable) or "host key" in error_str.lower():
        console.print("🔑 Host Key Verification Error", style="bold red")
        console.print("   Server host key verification failed", style="red")
        console.print("💡 Try:", style="cyan")
        console.print("   • Connect manually first: ssh user@host", style="cyan")
        console.print("   • Or drop the -k flag", style="cyan")
        return 1

    console.print("❌ Operation Failed", style="bold red")
    clean_error = error_str.split(":")[-1].strip() if ":" in error_str else error_str
    if len(clean_error) > 100:
        clean_error = clean_error[:97] + "..."
    console.print(f"   {clean_error}", style="red")
    console.print("💡 Try:", style="cyan")
    console.print("   • Run with -h flag for help", style="cyan")
    console.print("   • Run with -V for debug output", style="cyan")
    return 1


class DevUploaderHelpFormatter(argparse.HelpFormatter):

    def __init__(self, prog: str):
        super().__init__(prog, max_help_position=30, width=120)

    def format_help(self):
        return f"""Usage:
  {self._prog} [flags] <[user@]host> -u <source>:<destination> [-u ...]

Watch build output folders and upload changed files to a server via SFTP.

UPLOAD:
  -u, -upload-pair string       <source>:<destination>; repeat for more folders.
                                All destinations live on the same host.
  -j, -connections int          parallel SFTP connections per folder (default: {DEFAULT_CONNECTIONS})
  -r, -retries int              retries per file inside a connection (default: 3)
  -b, -backoff float            initial backoff seconds for retries (default: 0.5)

WATCH:
  -d, -debounce-ms int          quiet period before a batch is uploaded (default: {DEFAULT_DEBOUNCE_MS})
  -s, -ignore-suffix string     ignore paths ending with this; repeatable (e.g. .map)
  -x, -ignore-substring string  ignore paths containing this; repeatable (e.g. /.cache/)
  -N, -no-initial-files         do not upload the current folder contents on start

CONNECTION:
  -p, -port int                 SSH port number (default: 22)
  -k, -verify-host-key          enable strict host key verification

OUTPUT:
  -V, -verbose                  debug logging
  -v, -version                  print the version and exit
  -h, -help                     show this help message and exit

Examples:
  {self._prog} deploy@dev.example.com -u dist/apps/web:/var/www/web
  {self._prog} -j 8 -s .map -u dist/a:/srv/a -u dist/b:/srv/b dev.example.com
"""


def _parse_ssh_target(target: str) -> SSHClientConfig:
    if "@" in target:
        user, host = target.split("@", 1)
    else:
        user, host = None, target
    return SSHClientConfig(host=host, username=user)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="dev-uploader",
        description="Watch build output folders and upload them to a server via SFTP",
        formatter_class=DevUploaderHelpFormatter,
        add_help=False,
    )
    p.add_argument("-h", "--help", "-help", action="store_const", const=True, help=argparse.SUPPRESS)
    p.add_argument("-v", "--version", "-version", action="store_const", const=True, help=argparse.SUPPRESS)
    p.add_argument("target", nargs="?", help="[user@]host")
    p.add_argument("-u", "--upload-pair", action="append", default=[], dest="upload_pairs", help=argparse.SUPPRESS)
    p.add_argument("-p", "--port", type=int, default=22, help=argparse.SUPPRESS)
    p.add_argument("-k", "--verify-host-key", action="store_true", help=argparse.SUPPRESS)
    p.add_argument("-j", "--connections", type=int, default=DEFAULT_CONNECTIONS, help=argparse.SUPPRESS)
    p.add_argument("-r", "--retries", type=int, default=3, help=argparse.SUPPRESS)
    p.add_argument("-b", "--backoff", type=float, default=0.5, help=argparse.SUPPRESS)
    p.add_argument("-d", "--debounce-ms", type=int, default=DEFAULT_DEBOUNCE_MS, help=argparse.SUPPRESS)
    p.add_argument("-s", "--ignore-suffix", action="append", default=[], dest="ignore_suffixes", help=argparse.SUPPRESS)
    p.add_argument("-x", "--ignore-substring", action="append", default=[], dest="ignore_substrings", help=argparse.SUPPRESS)
    p.add_argument("-N", "--no-initial-files", action="store_true", help=argparse.SUPPRESS)
    p.add_argument("-V", "--verbose", action="store_true", help=argparse.SUPPRESS)
    return p


def settings_from_args(args: argparse.Namespace) -> WatchSettings:
    ssh = _parse_ssh_target(args.target)
    return WatchSettings(
        host=ssh.host,
        port=args.port,
        username=ssh.username,
        connections=args.connections,
        debounce_ms=args.debounce_ms,
        ignore_suffixes=tuple(args.ignore_suffixes),
        ignore_substrings=tuple(args.ignore_substrings),
        emit_initial_files=not args.no_initial_files,
        strict_host_key=args.verify_host_key,
        retries=args.retries,
        backoff=args.backoff,
    )


def build_watcher(
    index: int, pair: UploadPair, settings: WatchSettings, progress: Optional[Progress] = None
) -> Watcher:
    name = f"watcher_{index + 1}"
    watcher_logger = logger.getChild(name)
    ssh_cfg = SSHClientConfig(
        host=settings.host,
        port=settings.port,
        username=settings.username,
        strict_host_key=settings.strict_host_key,
    )

    async def connect(slot: int) -> SFTPConnection:
        conn = SFTPConnection(
            ssh_cfg,
            local_root=pair.source,
            name=f"{name}_sftp_{slot + 1}",
            retries=settings.retries,
            backoff=settings.backoff,
            logger=watcher_logger,
        )
        await conn.connect()
        return conn

    prepared = PreparedWatcher(watcher_name=name, upload_pair=pair, ignore_rules=settings.ignore_rules)
    return Watcher(prepared, settings, connect, logger=watcher_logger, progress=progress)


async def _run_watcher(watcher: Watcher) -> None:
    try:
        await watcher.run()
    finally:
        await watcher.close()


async def cmd_watch(args: argparse.Namespace) -> int:
    settings = settings_from_args(args)
    pairs = validate_upload_pairs(args.upload_pairs, logger=logger)
    with Progress(console=console, transient=True) as progress:
        watchers = [build_watcher(i, pair, settings, progress) for i, pair in enumerate(pairs)]
        results = await asyncio.gather(*(_run_watcher(w) for w in watchers), return_exceptions=True)
    failed = 0
    for watcher, result in zip(watchers, results):
        if isinstance(result, BaseException):
            failed += 1
            logger.error("%s stopped: %s", watcher.name, result)
            if isinstance(result, Exception):
                handle_error(result)
    return 1 if failed else 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()

    if argv is None:
        import sys
        argv = sys.argv[1:]

    if len(argv) == 0:
        print(DevUploaderHelpFormatter("dev-uploader").format_help())
        return 0

    try:
        args = parser.parse_args(argv)
    except SystemExit:
        console.print("\n⚠️ Invalid Command Arguments", style="bold yellow")
        console.print("💡 Common issues:", style="cyan")
        console.print("   • Numeric flags (-j, -d, -p, -r) need a number", style="cyan")
        console.print("   • Use dev-uploader -h for help", style="cyan")
        return 1

    if args.help:
        print(DevUploaderHelpFormatter("dev-uploader").format_help())
        return 0

    if args.version:
        print(__version__)
        return 0

    if not args.target or not args.upload_pairs:
        console.print("❌ A host and at least one -u <source>:<destination> are required", style="red")
        return 1

    setup_logging(args.verbose)

    try:
        return asyncio.run(cmd_watch(args))
    except KeyboardInterrupt:
        console.print("\n🛑 Stopped by user", style="yellow")
        return 130
    except Exception as e:
        return handle_error(e)
