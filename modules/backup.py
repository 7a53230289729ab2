import asyncio
import datetime
import logging
import os
import shutil

import toml

from dataclasses import asdict, dataclass

from modules.config import resolve_world_path
from modules.constants_classes import (
    BACKUP_RECORD_NAME,
    BACKUP_TIMESTAMP_FORMAT,
    ENVIRONMENT_VARIABLE_CURRENT_BACKUP_DIR_PATH,
    WORLD_DID_NOT_EXIST,
)
from modules.errors import (
    BackupError,
    BackupRejectedError,
    ConsoleClosedError,
    ServerNotRunningError,
)
from modules.serverstate import ServerState

log = logging.getLogger(__name__)


@dataclass
class BackupRecord:
    destination: str
    started_at: str
    completed: bool = False


class BackupCoordinator:
    """
    Copies the server's world data to backup_dir/<timestamp>.

    The backup in progress is recorded in backup_dir/.mcpal-backup.toml and in
    the CURRENT_BACKUP_DIR_PATH environment variable. A record that is still
    incomplete on the next run belongs to an interrupted copy, whose
    destination is deleted.

    lifecycle_lock is shared with the supervisor. The state check and the
    copy run under it, so the server is never started or stopped mid-copy.
    """

    def __init__(self, config, supervisor=None, lifecycle_lock=None):
        self.config = config
        self.settings = config.settings
        self.supervisor = supervisor
        self.lifecycle_lock = lifecycle_lock or asyncio.Lock()
        self.record_path = os.path.join(config.backup_dir, BACKUP_RECORD_NAME)
        self.last_backup = None
        self._lock = asyncio.Lock()

    @property
    def in_progress(self):
        return self._lock.locked()

    def read_record(self):
        if not os.path.exists(self.record_path):
            return None
        try:
            data = toml.load(self.record_path)
            return BackupRecord(
                destination=data["destination"],
                started_at=data.get("started_at", ""),
                completed=bool(data.get("completed", False)),
            )
        except (toml.TomlDecodeError, KeyError, OSError) as e:
            log.warning(f"unreadable backup record {self.record_path}: {e}")
            return None

    def write_record(self, record):
        os.makedirs(self.config.backup_dir, exist_ok=True)
        with open(self.record_path, "w", encoding="utf-8") as f:
            toml.dump(asdict(record), f)

    def clear_record(self):
        if os.path.exists(self.record_path):
            os.remove(self.record_path)
        os.environ.pop(ENVIRONMENT_VARIABLE_CURRENT_BACKUP_DIR_PATH, None)

    def recover_interrupted(self):
        """Remove the destination of a backup that never completed"""
        record = self.read_record()
        if record is not None and record.completed:
            return None

        destination = record.destination if record else None
        if destination is None:
            destination = os.environ.get(ENVIRONMENT_VARIABLE_CURRENT_BACKUP_DIR_PATH)
        if not destination:
            if record is None and os.path.exists(self.record_path):
                self.clear_record()
            return None

        log.warning(f"found interrupted backup {destination}, it can't be trusted")
        if os.path.isdir(destination) and self._inside_backup_dir(destination):
            shutil.rmtree(destination)
            log.info(f"removed incomplete backup {destination}")
        self.clear_record()
        return destination

    def _inside_backup_dir(self, path):
        backup_dir = os.path.realpath(self.config.backup_dir)
        return os.path.commonpath([backup_dir, os.path.realpath(path)]) == backup_dir

    def new_destination(self, now=None):
        now = now or datetime.datetime.now()
        name = now.strftime(BACKUP_TIMESTAMP_FORMAT)
        destination = os.path.join(self.config.backup_dir, name)

        suffix = 1
        while os.path.exists(destination):
            destination = os.path.join(self.config.backup_dir, f"{name}-{suffix}")
            suffix += 1

        return destination

    def list_backups(self):
        """Completed backups, newest first"""
        if not os.path.isdir(self.config.backup_dir):
            return []

        record = self.read_record()
        pending = record.destination if record and not record.completed else None
        backups = [
            os.path.join(self.config.backup_dir, d)
            for d in os.listdir(self.config.backup_dir)
            if os.path.isdir(os.path.join(self.config.backup_dir, d))
        ]
        return sorted((b for b in backups if b != pending), reverse=True)

    def run_backup(self):
        """Copy the world now, blocking. Callers make sure nothing writes to it."""
        self.recover_interrupted()

        world_path = resolve_world_path(self.config)
        if not os.path.isdir(world_path):
            log.warning(WORLD_DID_NOT_EXIST)
            raise BackupError(f"no world data at {world_path}")

        destination = self.new_destination()
        record = BackupRecord(
            destination=destination,
            started_at=datetime.datetime.now().isoformat(timespec="seconds"),
        )
        self.write_record(record)
        os.environ[ENVIRONMENT_VARIABLE_CURRENT_BACKUP_DIR_PATH] = destination

        log.info(f"backing up {world_path} to {destination}")
        try:
            shutil.copytree(
                world_path,
                os.path.join(destination, os.path.basename(world_path)),
            )
        except (OSError, shutil.Error) as e:
            log.error(f"backup to {destination} failed: {e}")
            raise BackupError(f"backup to {destination} failed: {e}") from e

        record.completed = True
        self.write_record(record)
        os.environ.pop(ENVIRONMENT_VARIABLE_CURRENT_BACKUP_DIR_PATH, None)

        self.last_backup = destination
        log.info(f"backup finished: {destination}")
        return destination

    async def backup(self):
        """
        Back up the world if the server is not writing to it.

        Allowed while the server is stopped, or while it runs if the server
        supports holding saves and confirms the hold. Anything else raises
        BackupRejectedError. Waits for a start or stop in progress to finish
        first.
        """
        if self._lock.locked():
            raise BackupRejectedError("a backup is already in progress")

        async with self._lock, self.lifecycle_lock:
            state = self.supervisor.status() if self.supervisor else ServerState.STOPPED
            loop = asyncio.get_running_loop()

            if state is ServerState.STOPPED:
                return await loop.run_in_executor(None, self.run_backup)

            if state is ServerState.RUNNING and self.settings.supports_hold_saves:
                await self._hold_saves()
                try:
                    return await loop.run_in_executor(None, self.run_backup)
                finally:
                    await self._resume_saves()

            raise BackupRejectedError(
                f"server is {state.value}, stop it first or configure hold saves "
                "to back up while it runs"
            )

    async def _hold_saves(self):
        settings = self.settings
        confirmed = self.supervisor.expect_line(lambda line: settings.hold_saves_confirm in line)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + settings.hold_saves_timeout

        try:
            await self.supervisor.send_command(settings.hold_saves_command)
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                if settings.hold_saves_query_command:
                    await self.supervisor.send_command(settings.hold_saves_query_command)
                    remaining = min(1.0, remaining)
                try:
                    await asyncio.wait_for(asyncio.shield(confirmed), timeout=remaining)
                    log.info("server confirmed saves are on hold")
                    return
                except asyncio.TimeoutError:
                    continue
        finally:
            confirmed.cancel()

        await self._resume_saves()
        raise BackupRejectedError("server did not confirm holding saves, backup deferred")

    async def _resume_saves(self):
        if not self.settings.resume_saves_command:
            return
        if self.supervisor.status() is not ServerState.RUNNING:
            return
        try:
            await self.supervisor.send_command(self.settings.resume_saves_command)
        except (ConsoleClosedError, ServerNotRunningError) as e:
            log.warning(f"could not resume saves: {e}")
