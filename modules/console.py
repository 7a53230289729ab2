import asyncio
import logging

from modules.constants_classes import STOP_SENTINEL
from modules.errors import ConsoleClosedError

log = logging.getLogger(__name__)


class ConsoleBridge:
    """
    Line based proxy over the server's stdin/stdout.

    Every output line is logged, checked for the stop sentinel and handed to
    the registered listeners. Commands are written newline terminated and
    flushed straight away. The RunningState of the context at construction
    time is the one this bridge reports to.
    """

    def __init__(self, context, reader, writer, server_id="server"):
        self.context = context
        self.running = context.running
        self.server_id = server_id
        self.sentinel_seen = False
        self.closed = asyncio.Event()

        self._reader = reader
        self._writer = writer
        self._listeners = []
        self._task = None

    def start(self):
        self._task = asyncio.create_task(self._read_loop())
        return self._task

    def add_listener(self, callback):
        self._listeners.append(callback)

    def remove_listener(self, callback):
        if callback in self._listeners:
            self._listeners.remove(callback)

    def process_line(self, line):
        log.info(f"[{self.server_id}] {line}")

        if STOP_SENTINEL in line and self.running.mark_stopped():
            self.sentinel_seen = True
            log.debug(f"[{self.server_id}] stop sentinel seen")

        for listener in list(self._listeners):
            try:
                listener(line)
            except Exception as e:
                log.error(f"Error processing console line: {e}")

    async def _read_loop(self):
        try:
            while True:
                line = await self._reader.readline()
                if not line:
                    break
                self.process_line(line.decode("utf-8", errors="replace").rstrip("\r\n"))
        except asyncio.CancelledError:
            log.debug(f"[{self.server_id}] console reader cancelled")
            raise
        except Exception as e:
            log.error(f"[{self.server_id}] console reader failed: {e}")
        finally:
            # EOF, error or cancel: the server is gone either way
            self.running.mark_stopped()
            self._close_writer()
            self.closed.set()

    async def send_command(self, command):
        log.info(f"[{self.server_id}] Sending command: {command}")
        if self._writer is None or self._writer.is_closing():
            raise ConsoleClosedError(f"server console is closed, could not send {command!r}")

        try:
            self._writer.write(f"{command}\n".encode("utf-8"))
            await self._writer.drain()
        except OSError as e:
            raise ConsoleClosedError(f"server console closed while sending {command!r}") from e

    async def wait_closed(self):
        await self.closed.wait()

    async def close(self):
        """Cancel the read loop and release both streams"""
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._close_writer()

    def _close_writer(self):
        if self._writer is None or self._writer.is_closing():
            return
        try:
            self._writer.close()
        except OSError as e:
            log.debug(f"[{self.server_id}] error closing server console: {e}")
