"""
Synapse Vault - Main Application
================================

Application wiring and command line interface. One VaultApp owns the
vault session and hands it to the store, the temp file manager and the
rotation coordinator.
"""

import argparse
import json
import sys
import time
from pathlib import Path
from typing import Optional, Tuple

from synapse_vault.config import Config
from synapse_vault.security import (
    KdfParams,
    KeyDerivationService,
    OperationResult,
    SecureDeleter,
    VaultSession,
    VaultStatus,
)
from synapse_vault.storage import VaultStore, TempFileManager
from synapse_vault.storage.temp_files import Launcher, default_launcher
from synapse_vault.actions import (
    FileOperations,
    RotationCoordinator,
    RotationResult,
    StorageMigrator,
    MigrationResult,
)
from synapse_vault.actions.migration import MigrationCallback
from synapse_vault.actions.rotation import ProgressCallback
from synapse_vault.utils.logging_config import setup_logging, get_logger, LoggingConfig
from synapse_vault.utils.exceptions import VaultError

logger = get_logger(__name__)


class VaultApp:
    """Main orchestrator for one vault."""

    def __init__(
        self,
        config: Optional[Config] = None,
        config_path: Optional[Path] = None,
        launcher: Optional[Launcher] = None,
        watch_temp: bool = True
    ):
        """Initialize the application.

        Args:
            config: Loaded configuration; read from ``config_path`` if None.
            config_path: Settings file used for loading and saving.
            launcher: Opens decrypted copies in an external viewer.
            watch_temp: Watch opened copies for removal by the viewer.
        """
        self.config_path = config_path
        self.config = config or Config.load(config_path)
        self.launcher = launcher
        self.watch_temp = watch_temp

        security = self.config.security
        self.kdf = KeyDerivationService(KdfParams(
            algorithm=security.kdf_algorithm,
            iterations=security.pbkdf2_iterations,
            memory_cost=security.argon2_memory_cost,
            time_cost=security.argon2_time_cost,
            parallelism=security.argon2_parallelism,
        ))
        self.file_ops = FileOperations()
        self._build(self.config.storage.storage_path)

    def _build(self, storage_root: Path) -> None:
        self.session = VaultSession(storage_root, kdf=self.kdf)
        self.store = VaultStore(storage_root, self.session, file_ops=self.file_ops)
        self.temp_files = TempFileManager(
            self.store,
            deleter=SecureDeleter(self.config.security.secure_delete_passes),
            launcher=self.launcher,
            file_ops=self.file_ops,
            watch=self.watch_temp,
        )
        self.rotation = RotationCoordinator(self.store, self.session)

    @property
    def storage_root(self) -> Path:
        return self.store.root

    def start(self) -> VaultStatus:
        """Create the storage layout, load the key and clear stale temp files."""
        self.store.ensure_layout()
        status = self.session.initialize()
        self.temp_files.start()
        logger.info(f"Vault ready at {self.storage_root}")
        return status

    def stop(self) -> None:
        """Wipe temp copies and the in-memory key."""
        self.rotation.shutdown(wait=True)
        self.temp_files.cleanup_all()
        self.session.teardown()
        logger.info("Vault closed")

    def __enter__(self) -> "VaultApp":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False

    # =====================
    # Password management
    # =====================

    def set_password(
        self,
        new_password: str,
        old_password: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None
    ) -> Tuple[OperationResult, Optional[RotationResult]]:
        """Set or change the password, then rotate if asked to."""
        result = self.session.set_password(new_password, old_password)
        if not result.success or not result.needs_rotation:
            return result, None
        return result, self.rotation.run(on_progress)

    def remove_password(self, password: str) -> OperationResult:
        return self.session.remove_password(password)

    # =====================
    # Relocation
    # =====================

    def relocate(
        self,
        new_root: Path,
        on_progress: Optional[MigrationCallback] = None
    ) -> MigrationResult:
        """Move the vault and reopen it at the new location.

        A vault with a password comes back locked.
        """
        old_root = self.storage_root
        with self.store.lock:
            self.temp_files.cleanup_all()
            migrator = StorageMigrator(self.config, self.config_path)
            result = migrator.migrate(old_root, Path(new_root), on_progress)

        if not result.success:
            self.temp_files.start()
            return result

        self.rotation.shutdown(wait=True)
        self.session.teardown()
        self._build(result.new_path)
        self.start()
        return result


# =====================
# Command line
# =====================

def _print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def _print_rotation(rotation: Optional[RotationResult]) -> int:
    if rotation is None:
        return 0
    print(f"Processed {rotation.processed}/{rotation.total} items ({len(rotation.errors)} failed)")
    for error in rotation.errors:
        print(f"  ✗ {error}", file=sys.stderr)
    return 0 if rotation.success else 2


def _print_progress(event) -> None:
    print(f"  [{event.percentage:3d}%] {event.current}/{event.total}", file=sys.stderr)


def cmd_status(app: VaultApp, args) -> int:
    status = app.session.status().to_dict()
    status["storagePath"] = str(app.storage_root)
    _print_json(status)
    return 0


def cmd_add(app: VaultApp, args) -> int:
    for path in args.paths:
        record = app.store.add_file(path, tags=args.tag or [])
        print(f"✓ {record.id}  {record.original_name}")
    return 0


def cmd_list(app: VaultApp, args) -> int:
    if args.query or args.tag:
        records = app.store.search(args.query or "", args.tag or [])
    else:
        records = app.store.list_files()
    if args.json:
        _print_json([r.to_dict() for r in records])
        return 0
    if not records:
        print("Vault is empty.")
        return 0
    for record in records:
        tags = f"  [{', '.join(record.tags)}]" if record.tags else ""
        print(f"  {record.id}  {record.original_name}  ({record.format}, {record.size_bytes} B){tags}")
    return 0


def cmd_remove(app: VaultApp, args) -> int:
    record = app.store.remove_file(args.id)
    print(f"✓ Removed {record.original_name}")
    return 0


def cmd_tags(app: VaultApp, args) -> int:
    if args.set is not None:
        record = app.store.update_tags(args.id, args.set)
    else:
        record = app.store.get_file(args.id)
        if args.add:
            record = app.store.add_tags(args.id, args.add)
        if args.remove:
            record = app.store.remove_tags(args.id, args.remove)
    print(f"{record.original_name}: {', '.join(record.tags) or '(no tags)'}")
    return 0


def cmd_rename(app: VaultApp, args) -> int:
    record = app.store.rename_file(args.id, args.name)
    print(f"✓ Renamed to {record.original_name} ({record.format})")
    return 0


def cmd_export(app: VaultApp, args) -> int:
    path = app.store.export_file(args.id, Path(args.destination).expanduser())
    print(f"✓ Exported to {path}")
    return 0


def cmd_open(app: VaultApp, args) -> int:
    path = app.temp_files.open_file(args.id)
    print(f"Opened {path}")
    print("Press Ctrl+C when done viewing; the copy is wiped on exit.")
    try:
        while path in app.temp_files.opened_files:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    return 0


def cmd_set_password(app: VaultApp, args) -> int:
    result, rotation = app.set_password(
        args.new_password,
        old_password=args.password,
        on_progress=_print_progress,
    )
    result.raise_for_error()
    print("✓ Password set")
    return _print_rotation(rotation)


def cmd_remove_password(app: VaultApp, args) -> int:
    if not args.password:
        print("✗ --password is required", file=sys.stderr)
        return 1
    app.remove_password(args.password).raise_for_error()
    print("✓ Password removed")
    return 0


def cmd_rotate(app: VaultApp, args) -> int:
    return _print_rotation(app.rotation.run(_print_progress))


def cmd_relocate(app: VaultApp, args) -> int:
    def on_progress(event) -> None:
        print(f"  [{event.stage}] {event.message}", file=sys.stderr)

    result = app.relocate(Path(args.destination), on_progress)
    if not result.success:
        print(f"✗ {result.error}", file=sys.stderr)
        return 1
    print(f"✓ Vault moved to {result.new_path}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="synapse-vault",
        description="Synapse Vault - encrypted local file vault"
    )
    parser.add_argument('--config', '-c', type=Path, help='Path to settings.yaml')
    parser.add_argument('--password', '-p', help='Vault password (unlocks a locked vault)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable debug logging')
    sub = parser.add_subparsers(dest="command", required=True)

    p_status = sub.add_parser("status", help="Show lock and password state")
    p_status.set_defaults(func=cmd_status, needs_unlock=False)

    p_add = sub.add_parser("add", help="Import files into the vault")
    p_add.add_argument("paths", nargs="+", help="Files to import")
    p_add.add_argument("--tag", "-t", action="append", help="Tag to attach (repeatable)")
    p_add.set_defaults(func=cmd_add, needs_unlock=True)

    p_list = sub.add_parser("list", help="List stored files")
    p_list.add_argument("--query", "-q", help="Filter by name")
    p_list.add_argument("--tag", "-t", action="append", help="Require tag (repeatable)")
    p_list.add_argument("--json", action="store_true", help="Print records as JSON")
    p_list.set_defaults(func=cmd_list, needs_unlock=True)

    p_rm = sub.add_parser("remove", help="Delete a stored file")
    p_rm.add_argument("id", help="File id")
    p_rm.set_defaults(func=cmd_remove, needs_unlock=True)

    p_tags = sub.add_parser("tags", help="Show or change tags")
    p_tags.add_argument("id", help="File id")
    p_tags.add_argument("--set", nargs="*", help="Replace all tags")
    p_tags.add_argument("--add", nargs="+", help="Tags to add")
    p_tags.add_argument("--remove", nargs="+", help="Tags to remove")
    p_tags.set_defaults(func=cmd_tags, needs_unlock=True)

    p_ren = sub.add_parser("rename", help="Rename a stored file")
    p_ren.add_argument("id", help="File id")
    p_ren.add_argument("name", help="New name")
    p_ren.set_defaults(func=cmd_rename, needs_unlock=True)

    p_exp = sub.add_parser("export", help="Decrypt a file to disk")
    p_exp.add_argument("id", help="File id")
    p_exp.add_argument("destination", help="Output directory or file path")
    p_exp.set_defaults(func=cmd_export, needs_unlock=True)

    p_open = sub.add_parser("open", help="Open a decrypted copy in the default viewer")
    p_open.add_argument("id", help="File id")
    p_open.set_defaults(func=cmd_open, needs_unlock=True)

    p_setpw = sub.add_parser("set-password", help="Set or change the vault password")
    p_setpw.add_argument("new_password", help="New password")
    p_setpw.set_defaults(func=cmd_set_password, needs_unlock=False)

    p_rmpw = sub.add_parser("remove-password", help="Remove the vault password")
    p_rmpw.set_defaults(func=cmd_remove_password, needs_unlock=False)

    p_rot = sub.add_parser("rotate", help="Re-encrypt every file and the ledger")
    p_rot.set_defaults(func=cmd_rotate, needs_unlock=True)

    p_rel = sub.add_parser("relocate", help="Move the vault to a new folder")
    p_rel.add_argument("destination", help="New storage folder (must be empty)")
    p_rel.set_defaults(func=cmd_relocate, needs_unlock=False)

    return parser


def main(argv=None) -> int:
    """Main entry point with CLI support."""
    args = build_parser().parse_args(argv)

    try:
        config = Config.load(args.config)
    except VaultError as e:
        print(f"✗ {e.message}", file=sys.stderr)
        return 1

    setup_logging(LoggingConfig(
        level="DEBUG" if args.verbose else config.logging.level,
        log_dir=config.logging.log_dir,
        file_output=config.logging.file_output,
    ))

    launcher = default_launcher if args.command == "open" else None
    app = VaultApp(config, args.config, launcher=launcher, watch_temp=args.command == "open")

    try:
        status = app.start()
        if args.needs_unlock and status.is_locked:
            if not args.password:
                print("✗ Vault is locked. Pass --password to unlock.", file=sys.stderr)
                return 1
            app.session.unlock(args.password).raise_for_error()
        return args.func(app, args)
    except VaultError as e:
        logger.debug(f"Command failed: {e}")
        print(f"✗ {e.message}", file=sys.stderr)
        return 1
    finally:
        app.stop()


if __name__ == "__main__":
    sys.exit(main())
