import asyncio
import logging

from modules.errors import BackupRejectedError, MCpalError
from modules.serverstate import ServerState

log = logging.getLogger(__name__)


class BackupScheduler:
    """
    Triggers backups according to settings.backup_trigger.

    manual:   only when the operator asks for one
    on-stop:  after the server stopped
    interval: every backup_interval_hours, stopping the server for the copy
              when it can't hold saves
    """

    def __init__(self, supervisor):
        self.supervisor = supervisor
        self.settings = supervisor.settings
        self.trigger = self.settings.backup_trigger
        self._task = None

    def start(self):
        if self.trigger == "on-stop":
            self.supervisor.stop_hooks.append(self.backup_after_stop)
        elif self.trigger == "interval":
            self._task = asyncio.create_task(self._interval_loop())
        log.info(f"backup trigger: {self.trigger}")

    async def close(self):
        if self.backup_after_stop in self.supervisor.stop_hooks:
            self.supervisor.stop_hooks.remove(self.backup_after_stop)
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    async def backup_after_stop(self):
        if self.supervisor.status() is not ServerState.STOPPED:
            return
        await self.supervisor.backup()

    async def scheduled_backup(self):
        """One scheduled backup; restarts the server around it when needed"""
        supervisor = self.supervisor
        state = supervisor.status()

        if state is ServerState.RUNNING and not self.settings.supports_hold_saves:
            log.info("stopping the server for the scheduled backup")
            await supervisor.stop()
            try:
                await supervisor.backup()
            finally:
                await supervisor.start()
            return

        if state in (ServerState.RUNNING, ServerState.STOPPED):
            await supervisor.backup()
            return

        raise BackupRejectedError(f"server is {state.value}, skipping scheduled backup")

    async def _interval_loop(self):
        interval = self.settings.backup_interval_hours * 3600
        while True:
            await asyncio.sleep(interval)
            log.info("starting scheduled backup")
            try:
                await self.scheduled_backup()
            except MCpalError as e:
                log.error(f"scheduled backup failed: {e}")
