import asyncio
import logging

log = logging.getLogger(__name__)


class RunningState:
    """
    "Server believed running" for one server process.

    Only the console bridge calls mark_stopped(). Everyone else reads
    is_running or awaits wait_stopped(). Once stopped it stays stopped; a new
    start creates a new RunningState.
    """

    def __init__(self, stopped=False):
        self._stopped = asyncio.Event()
        if stopped:
            self._stopped.set()

    @property
    def is_running(self):
        return not self._stopped.is_set()

    def mark_stopped(self):
        """Returns True only for the call that flipped the state"""
        if self._stopped.is_set():
            return False
        self._stopped.set()
        return True

    async def wait_stopped(self):
        await self._stopped.wait()


class ServerContext:
    """
    Shared between the supervisor and the console bridge of the current run.

    Holds the startup configuration, the RunningState of the current server
    process and the lock every write to the server console goes through.
    """

    def __init__(self, config):
        self.config = config
        # no server process yet
        self.running = RunningState(stopped=True)
        self.command_lock = asyncio.Lock()

    @property
    def settings(self):
        return self.config.settings

    def new_running_state(self):
        self.running = RunningState()
        return self.running
