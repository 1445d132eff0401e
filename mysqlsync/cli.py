"""Command line entry point for mysqlsync."""

from __future__ import annotations

import argparse
import dataclasses
import getpass
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Sequence

from . import __version__
from .backup import BackupService
from .config import CONFIG_FILE, AppConfig, config_exists, load_config, save_config
from .connections import ConnectionManager
from .errors import PreconditionFailure, SyncError, UserAborted
from .inspector import SchemaInspector
from .logs import configure_logging
from .models import ConnectionProfile, Role, SyncDirection, SyncReport
from .orchestrator import OverwritePolicy, SyncOrchestrator
from .shell import CommandShell
from .transfer import TransferPipeline

LOG = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_DECLINED = 3

LOCAL_PASSWORD_ENV = "MYSQLSYNC_LOCAL_PASSWORD"
REMOTE_PASSWORD_ENV = "MYSQLSYNC_REMOTE_PASSWORD"


@dataclass(slots=True)
class Prompter:
    """Terminal prompts; swapped out in tests."""

    interactive: bool = True
    ask: Callable[[str], str] = input
    ask_secret: Callable[[str], str] = getpass.getpass
    out: Callable[[str], None] = print

    def text(self, label: str, default: str | None = None) -> str:
        suffix = f" (default: {default})" if default else ""
        value = self.ask(f"{label}{suffix}: ").strip()
        return value or (default or "")

    def secret(self, label: str) -> str:
        return self.ask_secret(f"{label}: ")

    def confirm(self, question: str) -> bool:
        if not self.interactive:
            return False
        return self.ask(f"{question} (y/n): ").strip().lower() in {"y", "yes"}


@dataclass(slots=True)
class Context:
    """Everything a command handler needs."""

    args: argparse.Namespace
    config: AppConfig
    config_path: Path
    prompter: Prompter
    shell: CommandShell | None = None
    connections: ConnectionManager | None = None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mysqlsync",
        description="Clone, push, and synchronize MySQL databases between a local and a remote server.",
        allow_abbrev=False,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", type=Path, default=None, help=f"Config file (default: {CONFIG_FILE})")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("-y", "--yes", action="store_true", help="Overwrite existing target databases without asking")
    mode.add_argument(
        "--non-interactive",
        action="store_true",
        help="Never prompt; fail instead of overwriting an existing target",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Echo executed statements")
    parser.add_argument("--remote-host", help="Remote MySQL host")
    parser.add_argument("--remote-port", type=int, help="Remote MySQL port")
    parser.add_argument("--remote-user", help="Remote MySQL user")

    commands = parser.add_subparsers(dest="command", required=True)

    clone = commands.add_parser("clone-database", help="Pull a remote database into the local server")
    clone.add_argument("remote_db")
    clone.add_argument("local_db", nargs="?")
    clone.set_defaults(handler=_cmd_clone)

    push = commands.add_parser("push-database", help="Push a local database to the remote server")
    push.add_argument("local_db")
    push.add_argument("remote_db", nargs="?")
    push.set_defaults(handler=_cmd_push)

    sync = commands.add_parser("synchronize-databases", help="Synchronize a local/remote database pair")
    sync.add_argument("local_db")
    sync.add_argument("remote_db")
    sync.add_argument("direction", choices=[direction.value for direction in SyncDirection])
    sync.set_defaults(handler=_cmd_synchronize)

    setup = commands.add_parser("setup-remote-connection", help="Enter and test remote connection details")
    setup.add_argument("--save", action="store_true", help="Persist the remote profile to the config file")
    setup.set_defaults(handler=_cmd_setup_remote)

    test_local = commands.add_parser("test-connection", help="Check the local server connection")
    test_local.set_defaults(handler=_cmd_test_connection, role=Role.LOCAL)

    test_remote = commands.add_parser("test-remote-connection", help="Check the remote server connection")
    test_remote.set_defaults(handler=_cmd_test_connection, role=Role.REMOTE)

    listing = commands.add_parser("list-databases", help="List user databases")
    listing.add_argument("--remote", action="store_true", help="List databases on the remote server")
    listing.set_defaults(handler=_cmd_list_databases)
    return parser


def main(
    argv: Sequence[str] | None = None,
    *,
    shell: CommandShell | None = None,
    prompter: Prompter | None = None,
) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    config_path = args.config or CONFIG_FILE
    config = load_config(config_path)
    configure_logging(config.log_file, verbose=args.verbose)
    LOG.debug("Using configuration %s", config_path)
    if prompter is None:
        prompter = Prompter(interactive=not args.non_interactive and sys.stdin.isatty())
    elif args.non_interactive:
        prompter.interactive = False
    ctx = Context(args=args, config=config, config_path=config_path, prompter=prompter, shell=shell)
    try:
        return args.handler(ctx)
    except UserAborted as exc:
        print(f"Cancelled: {exc}")
        return EXIT_DECLINED
    except SyncError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_FAILURE
    except KeyboardInterrupt:
        print("Interrupted; export files and backups are left in place.", file=sys.stderr)
        return 130


def _cmd_clone(ctx: Context) -> int:
    report = _orchestrator(ctx).clone(ctx.args.remote_db, ctx.args.local_db)
    return _report(report)


def _cmd_push(ctx: Context) -> int:
    report = _orchestrator(ctx).push(ctx.args.local_db, ctx.args.remote_db)
    return _report(report)


def _cmd_synchronize(ctx: Context) -> int:
    report = _orchestrator(ctx).synchronize(ctx.args.local_db, ctx.args.remote_db, ctx.args.direction)
    return _report(report)


def _cmd_setup_remote(ctx: Context) -> int:
    profile = _prompt_remote_profile(ctx)
    connections = _connections(ctx)
    connections.add_profile(profile)
    status = connections.test_connection(Role.REMOTE)
    if not status.ok:
        print(f"Remote connection failed: {status.message}", file=sys.stderr)
        return EXIT_FAILURE
    print(f"Remote connection configured: {status.message}")
    if ctx.args.save or ctx.prompter.confirm(f"Save remote connection to {ctx.config_path}?"):
        saved = save_config(ctx.config.with_remote(profile), ctx.config_path)
        print(f"Configuration saved to {saved}")
    return EXIT_OK


def _cmd_test_connection(ctx: Context) -> int:
    role: Role = ctx.args.role
    connections = _connections(ctx, remote=role is Role.REMOTE)
    status = connections.test_connection(role)
    if status.ok:
        print(f"{role.value.capitalize()} connection successful ({status.latency_ms} ms): {status.message}")
        return EXIT_OK
    print(f"{role.value.capitalize()} connection failed: {status.message}", file=sys.stderr)
    return EXIT_FAILURE


def _cmd_list_databases(ctx: Context) -> int:
    role = Role.REMOTE if ctx.args.remote else Role.LOCAL
    connections = _connections(ctx, remote=role is Role.REMOTE)
    profile = connections.profile(role)
    names = SchemaInspector(connections).list_databases(role)
    print(f"Databases on {role.value} server ({profile.host}):")
    for name in names:
        print(f"  {name}")
    return EXIT_OK


def _report(report: SyncReport) -> int:
    print(report.summary())
    if report.backup is not None:
        print(f"Previous target saved to {report.backup.path}")
    return EXIT_OK


def _orchestrator(ctx: Context) -> SyncOrchestrator:
    connections = _connections(ctx, remote=True)
    config = ctx.config
    inspector = SchemaInspector(connections)
    pipeline = TransferPipeline(
        connections,
        config.staging_dir,
        retries=config.export_retries,
        retry_delay=config.retry_delay,
    )
    backups = BackupService(inspector, pipeline, config.backup_dir)
    if ctx.args.yes:
        policy = OverwritePolicy.FORCE
    elif ctx.prompter.interactive:
        policy = OverwritePolicy.PROMPT
    else:
        policy = OverwritePolicy.REFUSE
    return SyncOrchestrator(
        connections,
        inspector,
        backups,
        pipeline,
        policy=policy,
        confirm=ctx.prompter.confirm,
    )


def _connections(ctx: Context, *, remote: bool = False) -> ConnectionManager:
    if ctx.connections is None:
        ctx.connections = ConnectionManager(
            (_local_profile(ctx),),
            shell=ctx.shell,
            connect_timeout=ctx.config.connect_timeout,
        )
    if remote and not ctx.connections.has_profile(Role.REMOTE):
        ctx.connections.add_profile(_remote_profile(ctx))
    return ctx.connections


def _local_profile(ctx: Context) -> ConnectionProfile:
    """Local profile from the config file, or prompted for on first use."""

    if config_exists(ctx.config_path):
        profile = ctx.config.local.to_profile(Role.LOCAL)
        env_secret = os.environ.get(LOCAL_PASSWORD_ENV)
        if env_secret and not profile.credential:
            profile = dataclasses.replace(profile, credential=env_secret)
        return profile
    defaults = ctx.config.local
    if not ctx.prompter.interactive:
        return ConnectionProfile(
            role=Role.LOCAL,
            host=defaults.host,
            port=defaults.port,
            user=defaults.user,
            credential=os.environ.get(LOCAL_PASSWORD_ENV, ""),
        )
    prompter = ctx.prompter
    prompter.out("No configuration file found. Using interactive setup.")
    profile = ConnectionProfile(
        role=Role.LOCAL,
        host=prompter.text("MySQL Host", defaults.host),
        port=_port(prompter.text("MySQL Port", str(defaults.port))),
        user=prompter.text("MySQL Username", defaults.user),
        credential=prompter.secret("MySQL Password"),
    )
    ctx.config = ctx.config.with_local(profile)
    if prompter.confirm(f"Save configuration to {ctx.config_path}?"):
        save_config(ctx.config, ctx.config_path)
        prompter.out(f"Configuration saved to {ctx.config_path}")
    return profile


def _remote_profile(ctx: Context) -> ConnectionProfile:
    """Remote profile from flags, the config file, the environment, or prompts."""

    args = ctx.args
    stored = ctx.config.remote
    host = args.remote_host or (stored.host if stored is not None else None)
    if not host:
        if not ctx.prompter.interactive:
            raise PreconditionFailure("Remote host not configured; pass --remote-host or run setup-remote-connection --save.")
        return _prompt_remote_profile(ctx)
    port = args.remote_port or (stored.port if stored is not None else 3306)
    user = args.remote_user or (stored.user if stored is not None else "root")
    credential = os.environ.get(REMOTE_PASSWORD_ENV)
    if credential is None and stored is not None and stored.password is not None:
        credential = stored.password.get_secret_value()
    if credential is None:
        credential = ctx.prompter.secret("Remote MySQL Password") if ctx.prompter.interactive else ""
    return ConnectionProfile(
        role=Role.REMOTE,
        host=host,
        port=port,
        user=user,
        credential=credential,
        saved=stored is not None,
    )


def _prompt_remote_profile(ctx: Context) -> ConnectionProfile:
    args = ctx.args
    stored = ctx.config.remote
    prompter = ctx.prompter
    if not prompter.interactive:
        if not args.remote_host:
            raise PreconditionFailure("setup-remote-connection needs a terminal or --remote-host.")
        return ConnectionProfile(
            role=Role.REMOTE,
            host=args.remote_host,
            port=args.remote_port or 3306,
            user=args.remote_user or "root",
            credential=os.environ.get(REMOTE_PASSWORD_ENV, ""),
        )
    host = prompter.text("Remote MySQL Host/IP", args.remote_host or (stored.host if stored else None))
    if not host:
        raise PreconditionFailure("Remote MySQL host is required.")
    port = prompter.text("Remote MySQL Port", str(args.remote_port or (stored.port if stored else 3306)))
    user = prompter.text("Remote MySQL Username", args.remote_user or (stored.user if stored else "root"))
    return ConnectionProfile(
        role=Role.REMOTE,
        host=host,
        port=_port(port),
        user=user,
        credential=prompter.secret("Remote MySQL Password"),
    )


def _port(value: str) -> int:
    try:
        port = int(value)
    except ValueError:
        raise PreconditionFailure(f"Invalid port: {value!r}") from None
    if not 0 < port < 65536:
        raise PreconditionFailure(f"Invalid port: {value!r}")
    return port


if __name__ == "__main__":
    raise SystemExit(main())
