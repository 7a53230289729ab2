import asyncio
import datetime
import logging
import os

from modules.backup import BackupCoordinator
from modules.config import resolve_server_command
from modules.console import ConsoleBridge
from modules.constants_classes import (
    EULA_STILL_REJECTED,
    SERVER_ALREADY_RUNNING,
    SERVER_ALREADY_STOPPED,
)
from modules.context import ServerContext
from modules.errors import (
    ConsoleClosedError,
    FatalConfigurationError,
    MCpalError,
    ServerNotRunningError,
    ServerStartError,
)
from modules.guard import PreflightGuard
from modules.serverstate import PreflightFailure, ServerState

log = logging.getLogger(__name__)

# longest console line the reader accepts
STREAM_LIMIT = 1024 * 1024
MAX_EVENTS = 50


class ServerSupervisor:
    """
    Owns the server process and its console bridge.

    start/stop/send_command/backup are meant to be called from the event loop
    that runs the supervisor. Writes to the server console all go through the
    context's command lock; start, stop, crash handling and backups go
    through the lifecycle lock so they never interleave.
    """

    def __init__(self, config, server_id="minecraft"):
        if config is None:
            raise FatalConfigurationError("the supervisor needs a startup configuration")

        self.config = config
        self.settings = config.settings
        self.server_id = server_id
        self.context = ServerContext(config)
        self.guard = PreflightGuard(config)

        # backups take this lock too, see BackupCoordinator
        self._lifecycle_lock = asyncio.Lock()
        self.backups = BackupCoordinator(
            config, supervisor=self, lifecycle_lock=self._lifecycle_lock
        )

        self.state = ServerState.STOPPED
        self.process = None
        self.bridge = None
        self.start_time = None
        self.events = []
        self.stop_hooks = []

        self._watcher = None
        self._stopping = False
        self._restarts = 0
        self._returncode = None

        self.backups.recover_interrupted()

    def status(self):
        return self.state

    def snapshot(self):
        return {
            "server": self.server_id,
            "state": self.state,
            "pid": self.process.pid if self.process else "",
            "start_time": self.start_time,
            "server_dir": self.config.server_dir,
            "last_backup": self.backups.last_backup,
            "events": list(self.events[-5:]),
        }

    def update_state(self, new_state, message=None):
        old_state = self.state
        if old_state != new_state:
            state_msg = f"[{self.server_id}] State changed: {old_state.value} → {new_state.value}"
            if message:
                state_msg += f" ({message})"

            if new_state == ServerState.PREFLIGHT_FAILED:
                log.warning(state_msg)
            else:
                log.info(state_msg)

        self.state = new_state

        if message:
            self.events.append(
                {
                    "timestamp": datetime.datetime.now(),
                    "state": new_state.value,
                    "message": message,
                }
            )
            del self.events[:-MAX_EVENTS]

    async def start(self):
        """
        Launch the server and bring it to RUNNING.

        Known preflight failures are fixed and the start retried: a missing
        EULA exactly once, missing world data while the world wait allows it.
        Returns False when the server was not stopped to begin with.
        """
        if self.backups.in_progress:
            log.info(f"[{self.server_id}] waiting for the running backup to finish before starting")

        async with self._lifecycle_lock:
            if self.state is not ServerState.STOPPED:
                log.warning(SERVER_ALREADY_RUNNING)
                return False

            try:
                await self._launch_with_remediation()
            except (MCpalError, OSError):
                await self._teardown()
                if self.state is not ServerState.STOPPED:
                    self.update_state(ServerState.STOPPED, "giving up on startup")
                raise

            try:
                for command in self.config.startup_commands:
                    await self.send_command(command)
            except ConsoleClosedError as e:
                await self._teardown()
                self.update_state(ServerState.STOPPED, "server exited during startup")
                raise ServerStartError(f"server exited while running startup commands: {e}") from e

            self.update_state(ServerState.RUNNING, "server is up")
            self._watcher = asyncio.create_task(self._watch(self.bridge))
            return True

    async def _launch_with_remediation(self):
        eula_retried = False
        world_retries = 0
        while True:
            failure = await self._launch()
            if failure is None:
                return

            self.update_state(ServerState.PREFLIGHT_FAILED, f"{failure.value} check failed")
            if failure is PreflightFailure.EULA:
                if eula_retried:
                    raise FatalConfigurationError(EULA_STILL_REJECTED)
                self.guard.accept_eula()
                eula_retried = True
            else:
                world_retries += 1
                if world_retries > self.settings.world_retries:
                    raise FatalConfigurationError("the server keeps reporting missing world data")
                await self.guard.wait_for_world()

    async def _launch(self):
        """Spawn one server process and scan its early output"""
        command = resolve_server_command(self.config)
        if not os.path.isdir(self.config.server_dir):
            raise ServerStartError(f"server directory {self.config.server_dir} does not exist")

        self.update_state(ServerState.STARTING, "launching server")
        log.debug(f"[{self.server_id}] Launch command: {' '.join(command)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=self.config.server_dir,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            self.update_state(ServerState.STOPPED, "launch failed")
            log.error(f"[{self.server_id}] Failed to start server: {e}")
            raise ServerStartError(f"Failed to start server: {e}") from e

        log.info(f"[{self.server_id}] Server process started with PID {process.pid}")
        self.process = process
        self.start_time = datetime.datetime.now()
        self.context.new_running_state()
        self.bridge = ConsoleBridge(self.context, process.stdout, process.stdin, self.server_id)

        early_lines = asyncio.Queue()
        self.bridge.add_listener(early_lines.put_nowait)
        self.bridge.start()
        try:
            failure, exited = await self._scan_preflight(early_lines)
        finally:
            if self.bridge is not None:
                self.bridge.remove_listener(early_lines.put_nowait)

        if failure is None and not exited:
            return None

        await self._teardown()
        if failure is None:
            code = self._returncode
            self.update_state(ServerState.STOPPED, f"server exited during startup (code {code})")
            raise ServerStartError(f"server exited during startup with code {code}")

        return failure

    async def _scan_preflight(self, early_lines):
        """
        Read early output until the server is up, fails, or exits.

        Returns (failure, exited). The server counts as up after a ready
        marker, after preflight_lines lines, or after preflight_timeout.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.preflight_timeout
        closed = asyncio.ensure_future(self.bridge.wait_closed())
        seen = 0

        try:
            while seen < self.settings.preflight_lines:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    log.debug(f"[{self.server_id}] no ready marker within the preflight timeout")
                    return None, False

                getter = asyncio.ensure_future(early_lines.get())
                done, _ = await asyncio.wait(
                    {getter, closed}, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
                )

                if getter in done:
                    line = getter.result()
                    seen += 1
                    failure = self.guard.classify_line(line)
                    if failure is not None:
                        return failure, False
                    if self.guard.is_ready_line(line):
                        return None, False
                    continue

                getter.cancel()
                if closed in done:
                    while not early_lines.empty():
                        failure = self.guard.classify_line(early_lines.get_nowait())
                        if failure is not None:
                            return failure, True
                    return self.guard.classify_exit(), True

            return None, False
        finally:
            closed.cancel()

    async def _teardown(self):
        """
        Reap the process and release the bridge, killing if it lingers.

        Returns True when the process had to be killed.
        """
        process, bridge = self.process, self.bridge
        killed = False
        if process is not None:
            if process.returncode is None:
                try:
                    await asyncio.wait_for(process.wait(), timeout=self.settings.stop_timeout)
                except asyncio.TimeoutError:
                    log.warning(f"[{self.server_id}] Server didn't exit, killing")
                    self._kill(process)
                    killed = True
                    await process.wait()
            self._returncode = process.returncode
            log.info(
                f"[{self.server_id}] Server process terminated with return code {process.returncode}"
            )

        if bridge is not None:
            await bridge.close()

        self.process = None
        self.bridge = None
        return killed

    def _kill(self, process):
        try:
            process.kill()
        except ProcessLookupError:
            pass

    async def send_command(self, command):
        """Write one command to the server console, one writer at a time"""
        bridge = self.bridge
        if self.state is ServerState.STOPPED or bridge is None:
            raise ServerNotRunningError(f"server is not running, could not send {command!r}")

        async with self.context.command_lock:
            try:
                await bridge.send_command(command)
            except ConsoleClosedError:
                log.error(f"[{self.server_id}] lost the server console")
                await bridge.close()
                raise

    def expect_line(self, predicate):
        """Future resolved with the next console line matching predicate"""
        bridge = self.bridge
        if bridge is None:
            raise ServerNotRunningError("server is not running")

        future = asyncio.get_running_loop().create_future()

        def listener(line):
            if not future.done() and predicate(line):
                future.set_result(line)

        bridge.add_listener(listener)
        future.add_done_callback(lambda _: bridge.remove_listener(listener))
        return future

    async def stop(self):
        """
        Ask the server to stop and wait for it; kill it after stop_timeout.

        Always ends in STOPPED. Returns False when there was nothing to stop.
        """
        if self.backups.in_progress:
            log.info(f"[{self.server_id}] waiting for the running backup to finish before stopping")

        async with self._lifecycle_lock:
            if self.state is ServerState.STOPPED:
                log.warning(SERVER_ALREADY_STOPPED)
                return False

            self._stopping = True
            self._restarts = 0
            forced = False
            try:
                forced = await self._stop_process()
            finally:
                self._stopping = False
                self._cancel_watcher()
                self.update_state(
                    ServerState.STOPPED,
                    "server killed after stop timeout" if forced else "server stopped",
                )

        await self._run_stop_hooks()
        return True

    async def _stop_process(self):
        running = self.context.running
        process = self.process
        self.update_state(ServerState.STOPPING, "stop requested")

        try:
            await self.send_command(self.settings.stop_command)
        except (ConsoleClosedError, ServerNotRunningError) as e:
            log.warning(f"[{self.server_id}] could not send stop command: {e}")

        forced = False
        try:
            await asyncio.wait_for(running.wait_stopped(), timeout=self.settings.stop_timeout)
        except asyncio.TimeoutError:
            forced = True
            log.warning(
                f"[{self.server_id}] Server didn't stop within "
                f"{self.settings.stop_timeout:g} seconds, force killing"
            )
            if process is not None and process.returncode is None:
                self._kill(process)

        if await self._teardown():
            forced = True
        return forced

    async def restart(self):
        await self.stop()
        return await self.start()

    async def backup(self):
        return await self.backups.backup()

    async def close(self):
        """Stop the server if needed and release everything"""
        if self.state is not ServerState.STOPPED:
            await self.stop()
        self._cancel_watcher()
        if self.bridge is not None:
            await self.bridge.close()

    def _cancel_watcher(self):
        watcher, self._watcher = self._watcher, None
        if watcher is not None and watcher is not asyncio.current_task() and not watcher.done():
            watcher.cancel()

    async def _watch(self, bridge):
        """Notice the server going away without a stop() call"""
        await bridge.wait_closed()

        async with self._lifecycle_lock:
            if self.bridge is not bridge or self._stopping:
                return

            crashed = not bridge.sentinel_seen
            await self._teardown()
            self._watcher = None
            if crashed:
                log.error(
                    f"[{self.server_id}] Server exited without shutting down "
                    f"(code {self._returncode}), treating it as a crash"
                )
                self.update_state(ServerState.STOPPED, f"server crashed with code {self._returncode}")
            else:
                self.update_state(ServerState.STOPPED, "server stopped on its own")

        if crashed:
            await self._auto_restart()
        else:
            await self._run_stop_hooks()

    async def _auto_restart(self):
        limit = self.settings.auto_restart
        if limit <= 0:
            return
        if self._restarts >= limit:
            log.error(f"[{self.server_id}] giving up after {limit} automatic restarts")
            return

        self._restarts += 1
        log.warning(f"[{self.server_id}] restarting crashed server ({self._restarts}/{limit})")
        try:
            await self.start()
        except MCpalError as e:
            log.error(f"[{self.server_id}] automatic restart failed: {e}")

    async def _run_stop_hooks(self):
        for hook in list(self.stop_hooks):
            try:
                await hook()
            except MCpalError as e:
                log.error(f"[{self.server_id}] after-stop task failed: {e}")
