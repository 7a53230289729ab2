import os
import sys
import time

from modules.config import StartupConfiguration, SupervisorSettings

FAKE_SERVER = os.path.join(os.path.dirname(os.path.abspath(__file__)), "fake_server.py")


def make_config(root, *flags, startup_commands=(), **settings):
    """StartupConfiguration for a fake server living under root"""
    server_dir = os.path.join(root, "server")
    backup_dir = os.path.join(root, "backup")
    os.makedirs(server_dir, exist_ok=True)

    settings.setdefault("server_command", (sys.executable, FAKE_SERVER, *flags))
    settings.setdefault("stop_timeout", 5.0)
    settings.setdefault("preflight_timeout", 10.0)
    settings.setdefault("world_backoff", 0.05)

    return StartupConfiguration(
        root_dir=root,
        backup_dir=backup_dir,
        server_dir=server_dir,
        startup_commands=tuple(startup_commands),
        settings=SupervisorSettings(**settings),
    )


def write_tree(base, files):
    """Create files from a {relative path: bytes} mapping"""
    for relative, content in files.items():
        path = os.path.join(base, relative)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as f:
            f.write(content)


def read_tree(base):
    tree = {}
    for directory, _, names in os.walk(base):
        for name in names:
            path = os.path.join(directory, name)
            with open(path, "rb") as f:
                tree[os.path.relpath(path, base)] = f.read()
    return tree


def slow_copy(supervisor, seconds=0.5):
    """
    Replace the supervisor's world copy with one that takes a while.

    Returns the list the copy fills with (state, process alive) samples.
    """
    samples = []

    def copy():
        deadline = time.monotonic() + seconds
        while time.monotonic() < deadline:
            samples.append((supervisor.state, supervisor.process is not None))
            time.sleep(0.02)
        return "copied"

    supervisor.backups.run_backup = copy
    return samples
