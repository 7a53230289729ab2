import asyncio
import logging
import sys
import threading

from rich.console import Console
from rich.markup import escape

from modules.errors import FatalConfigurationError, MCpalError
from modules.main_menu import help_menu, main_menu

log = logging.getLogger(__name__)

EXIT_COMMANDS = ("exit", "quit")


class StdinReader:
    """Feed stdin lines into the event loop from a daemon thread"""

    def __init__(self, stream=None):
        self.stream = stream or sys.stdin
        self._lines = asyncio.Queue()
        self._thread = None

    def start(self):
        loop = asyncio.get_running_loop()

        def pump():
            while True:
                line = self.stream.readline()
                loop.call_soon_threadsafe(self._lines.put_nowait, line)
                if not line:
                    return

        # daemon, a blocked readline must not keep MCpal alive on exit
        self._thread = threading.Thread(target=pump, name="mcpal-stdin", daemon=True)
        self._thread.start()

    async def readline(self):
        if self._thread is None:
            self.start()
        return await self._lines.get()


class OperatorConsole:
    """Dispatches operator input to the supervisor"""

    def __init__(self, supervisor, console=None, read_line=None):
        self.supervisor = supervisor
        self.console = console or Console()
        self._read_line = read_line or StdinReader().readline

    async def run(self):
        while True:
            line = await self._read_line()
            if not line:
                log.info("operator input closed")
                return
            if not await self.handle(line):
                return

    async def handle(self, line):
        """Run one operator command, returns False when MCpal should quit"""
        command = line.strip()
        if not command:
            return True

        keyword = command.lower()
        if keyword in EXIT_COMMANDS:
            return False

        try:
            if keyword == "start":
                await self.supervisor.start()
            elif keyword == "stop":
                await self.supervisor.stop()
            elif keyword == "restart":
                await self.supervisor.restart()
            elif keyword == "backup":
                destination = await self.supervisor.backup()
                self.console.print(f"[green]backup saved to {escape(destination)}[/green]")
            elif keyword == "status":
                main_menu(self.supervisor.snapshot(), self.console)
            elif keyword == "help":
                help_menu(self.console)
            else:
                await self.supervisor.send_command(command)
        except FatalConfigurationError:
            raise
        except MCpalError as e:
            log.warning(f"{keyword.split()[0]} failed: {e}")
            self.console.print(f"[red]{escape(str(e))}[/red]")

        return True
