import datetime

from rich.box import SIMPLE
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

STATE_STYLES = {
    "STARTING": "yellow",
    "RUNNING": "green",
    "STOPPING": "yellow",
    "STOPPED": "dim",
    "PREFLIGHT_FAILED": "red",
}

HELP_TEXT = """start    start the server
stop     stop the server
restart  stop, then start the server
backup   back up the world (server stopped, or hold saves configured)
status   show this table
help     show this help
exit     stop the server and quit MCpal
anything else is sent to the server console"""


def title_screen(console=None):
    console = console or Console()
    console.print(
        Panel(
            "[bold]MCpal[/bold]  minecraft server supervisor",
            style="rgb(90,205,255)",
            expand=False,
        )
    )
    return console


def format_uptime(start_time, now=None):
    if start_time is None:
        return "-"
    uptime = (now or datetime.datetime.now()) - start_time
    hours, remainder = divmod(int(uptime.total_seconds()), 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours}h {minutes}m {seconds}s"


def status_table(snapshot, width=None):
    table = Table(show_header=True, header_style="white", expand=True, width=width, box=SIMPLE)

    table.add_column("Server", style="rgb(255,161,229)", no_wrap=True)
    table.add_column("PID", style="white", justify="right", no_wrap=True)
    table.add_column("Uptime", style="rgb(90,205,255)", justify="right", no_wrap=True)
    table.add_column("Last backup", style="rgb(90,205,255)", justify="right")
    table.add_column("State", justify="right", no_wrap=True)

    state_text = snapshot["state"].value
    state_style = STATE_STYLES.get(state_text, "dim")
    running = state_text != "STOPPED"

    table.add_row(
        escape(snapshot["server"]),
        str(snapshot["pid"]),
        format_uptime(snapshot["start_time"]) if running else "-",
        escape(snapshot["last_backup"] or "-"),
        f"[{state_style}]{state_text}[/{state_style}]",
    )
    return table


def main_menu(snapshot, console=None):
    console = console or Console()
    console.print(status_table(snapshot, width=console.width))

    events = snapshot.get("events") or []
    if events:
        lines = [
            escape(f"{event['timestamp'].strftime('%H:%M:%S')} [{event['state']}] {event['message']}")
            for event in events
        ]
        console.print(Panel("\n".join(lines), title="Recent events", expand=False))

    return console


def help_menu(console=None):
    console = console or Console()
    console.print(Panel(HELP_TEXT, title="Commands", expand=False))
    return console
