# MCpal keeps a minecraft dedicated server running for you: it starts it,
# passes your commands to its console, fixes the EULA / missing world startup
# problems and makes backups of the world without copying it mid-write.

import asyncio
import logging
import sys

from rich.console import Console
from rich.markup import escape

from __logger__ import setup_logger
from modules.config import bootstrap
from modules.errors import FatalConfigurationError
from modules.main_menu import help_menu, main_menu, title_screen
from modules.operator_console import OperatorConsole
from modules.properties import process_server_properties
from modules.scheduler import BackupScheduler
from modules.supervisor import ServerSupervisor

log = logging.getLogger(__name__)

console = Console()


# lets go
async def main(arguments, root_dir=None):
    title_screen(console)

    config = bootstrap(arguments, root_dir)
    log.debug(f"config: {config}")

    # server.properties has to be in place before the server sees it
    process_server_properties(config.server_dir, config.overridden_properties)

    supervisor = ServerSupervisor(config)
    scheduler = BackupScheduler(supervisor)
    operator = OperatorConsole(supervisor, console)

    try:
        await supervisor.start()
        scheduler.start()
        main_menu(supervisor.snapshot(), console)
        help_menu(console)

        await operator.run()
    finally:
        # This will run when the task is cancelled too
        await scheduler.close()
        await supervisor.close()
        log.info("MCpal shutting down")


def run(arguments=None):
    arguments = sys.argv[1:] if arguments is None else arguments
    setup_logger(level=logging.INFO, stream_logs=True, console=console)
    log.info("######################## STARTING FROM THE TOP ########################")

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    main_task = None
    exit_code = 0

    try:
        main_task = loop.create_task(main(arguments))
        loop.run_until_complete(main_task)
    except KeyboardInterrupt:
        # This runs when Ctrl+C is pressed
        log.info("Keyboard interrupt detected")
        if main_task and not main_task.done():
            # Cancel the main task so it stops the server on the way out
            main_task.cancel()
            try:
                loop.run_until_complete(main_task)
            except asyncio.CancelledError:
                pass
    except FatalConfigurationError as e:
        log.critical(f"{e}")
        console.print(f"[red]{escape(str(e))}[/red]")
        exit_code = 1
    finally:
        # Close all running event loop tasks
        pending = asyncio.all_tasks(loop)
        for task in pending:
            task.cancel()

        # Allow cancelled tasks to complete
        if pending:
            loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))

        loop.close()

    return exit_code


if __name__ == "__main__":
    sys.exit(run())
