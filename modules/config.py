import logging
import os
import shutil

import toml

from shutil import copyfile
from dataclasses import dataclass, field, fields
from types import MappingProxyType

from modules.constants_classes import (
    ARGUMENTS_FILENAME,
    BACKUP_PATH_DEFAULT_VALUE,
    BACKUP_PATH_PREFIX,
    BEDROCK_SERVER_COMMANDS_PREFIX,
    CONFIG_FILENAME,
    DEFAULT_CONFIG_FILENAME,
    INVALID_INPUT_PARAMETERS,
    SERVER_FILE_NOT_FOUND,
    SERVER_PATH_DEFAULT_VALUE,
    SERVER_PATH_PREFIX,
    SERVER_PROPERTIES_NAME,
)
from modules.errors import (
    FatalConfigurationError,
    InvalidStartArgumentsError,
    ServerStartError,
)
from modules.properties import load_properties

log = logging.getLogger(__name__)

BACKUP_TRIGGERS = ("manual", "interval", "on-stop")
DEFAULT_CONFIG_PATH = os.path.join(
    os.path.dirname(os.path.abspath(__file__)), "resources", DEFAULT_CONFIG_FILENAME
)


@dataclass(frozen=True)
class SupervisorSettings:
    # launch argv, detected from the server directory when empty
    server_command: tuple = ()
    stop_command: str = "stop"
    stop_timeout: float = 30.0

    preflight_lines: int = 50
    preflight_timeout: float = 60.0
    ready_markers: tuple = ("Server started.", "Done (")

    eula_file: str = "eula.txt"
    eula_markers: tuple = ("You need to agree to the EULA",)
    world_missing_markers: tuple = (
        "Failed to load level",
        "Couldn't load world",
    )
    world_retries: int = 5
    world_backoff: float = 2.0
    world_dir: str = ""

    # hold saves is server dependent, empty command means unsupported
    hold_saves_command: str = ""
    hold_saves_query_command: str = ""
    hold_saves_confirm: str = ""
    resume_saves_command: str = ""
    hold_saves_timeout: float = 30.0

    backup_trigger: str = "manual"
    backup_interval_hours: float = 24.0
    auto_restart: int = 0

    @property
    def supports_hold_saves(self):
        return bool(self.hold_saves_command and self.hold_saves_confirm)


@dataclass(frozen=True)
class StartupConfiguration:
    root_dir: str
    backup_dir: str
    server_dir: str
    startup_commands: tuple = ()
    overridden_properties: MappingProxyType = field(
        default_factory=lambda: MappingProxyType({})
    )
    settings: SupervisorSettings = field(default_factory=SupervisorSettings)


def load_settings(table):
    """Build SupervisorSettings from a [supervisor] toml table"""
    known = {f.name: f for f in fields(SupervisorSettings)}
    values = {}
    for key, value in (table or {}).items():
        name = key.replace("-", "_")
        if name not in known:
            log.warning(f"ignoring unknown supervisor setting: {key}")
            continue
        if isinstance(value, list):
            value = tuple(value)
        values[name] = value

    settings = SupervisorSettings(**values)
    if settings.backup_trigger not in BACKUP_TRIGGERS:
        log.warning(
            f"unknown backup_trigger {settings.backup_trigger!r}, "
            f"expected one of {', '.join(BACKUP_TRIGGERS)}; using manual"
        )
        settings = SupervisorSettings(**{**values, "backup_trigger": "manual"})

    return settings


def _argument_value(argument):
    return argument.partition("=")[2].strip().strip('"')


def extract_single_argument(arguments, prefix, default):
    for argument in arguments:
        if argument.startswith(prefix):
            return _argument_value(argument)
    return default


def extract_bedrock_server_commands(arguments):
    return tuple(
        _argument_value(argument)
        for argument in arguments
        if argument.startswith(BEDROCK_SERVER_COMMANDS_PREFIX)
    )


def is_reserved_argument(argument):
    return argument.startswith(
        (BACKUP_PATH_PREFIX, SERVER_PATH_PREFIX, BEDROCK_SERVER_COMMANDS_PREFIX)
    )


# everything else of the form --key=value is a server.properties override
def extract_property_overrides(arguments):
    overrides = {}
    for argument in arguments:
        if is_reserved_argument(argument) or not argument.startswith("--"):
            continue
        key, separator, value = argument[2:].partition("=")
        if not separator or not key:
            log.warning(f"ignoring argument without a value: {argument}")
            continue
        overrides[key] = value
    return overrides


def _resolve(root_dir, path):
    return os.path.abspath(os.path.join(root_dir, os.path.expanduser(path)))


def parse_arguments(arguments, root_dir, settings=None):
    backup_path = extract_single_argument(
        arguments, BACKUP_PATH_PREFIX, BACKUP_PATH_DEFAULT_VALUE
    )
    server_path = extract_single_argument(
        arguments, SERVER_PATH_PREFIX, SERVER_PATH_DEFAULT_VALUE
    )
    if not backup_path:
        raise InvalidStartArgumentsError(INVALID_INPUT_PARAMETERS)

    return StartupConfiguration(
        root_dir=root_dir,
        backup_dir=_resolve(root_dir, backup_path),
        server_dir=_resolve(root_dir, server_path or "."),
        startup_commands=extract_bedrock_server_commands(arguments),
        overridden_properties=MappingProxyType(extract_property_overrides(arguments)),
        settings=settings or SupervisorSettings(),
    )


# ensure mcpal config, starting from the commented default
def load_config_file(root_dir):
    config_path = os.path.join(root_dir, CONFIG_FILENAME)
    if not os.path.exists(config_path):
        copyfile(DEFAULT_CONFIG_PATH, config_path)
        log.info(f"created {config_path}, edit it to tune the supervisor")

    try:
        return toml.load(config_path)
    except toml.TomlDecodeError as e:
        raise FatalConfigurationError(f"{config_path} is not valid toml: {e}") from e


def read_arguments_file(root_dir):
    arguments_path = os.path.join(root_dir, ARGUMENTS_FILENAME)
    if not os.path.exists(arguments_path):
        return []
    return list(toml.load(arguments_path).get("arguments", []))


def write_arguments_file(root_dir, arguments):
    with open(os.path.join(root_dir, ARGUMENTS_FILENAME), "w", encoding="utf-8") as f:
        toml.dump({"arguments": list(arguments)}, f)


def bootstrap(arguments, root_dir=None):
    """
    Produce the StartupConfiguration for this run.

    Arguments given on the command line are saved so the next run can start
    without any. Without arguments the saved ones are used, and without
    either there is nothing to go on. Supervisor tunables come from the
    [supervisor] table of mcpal.toml.
    """
    root_dir = os.path.abspath(root_dir or os.getcwd())

    if arguments:
        write_arguments_file(root_dir, arguments)
        log.debug(f"saved arguments to {ARGUMENTS_FILENAME}")
    else:
        arguments = read_arguments_file(root_dir)
        if not arguments:
            raise InvalidStartArgumentsError(INVALID_INPUT_PARAMETERS)
        log.info(f"using arguments from {ARGUMENTS_FILENAME}")

    settings = load_settings(load_config_file(root_dir).get("supervisor"))
    return parse_arguments(arguments, root_dir, settings)


def find_bedrock_executable(server_dir):
    for name in ("bedrock_server", "bedrock_server.exe"):
        executable = os.path.join(server_dir, name)
        if os.path.isfile(executable):
            return executable
    return None


def resolve_server_command(config):
    """Return the argv used to launch the server"""
    settings = config.settings
    if settings.server_command:
        return list(settings.server_command)

    executable = find_bedrock_executable(config.server_dir)
    if executable:
        return [executable]

    if os.path.isfile(os.path.join(config.server_dir, "server.jar")):
        java = shutil.which("java")
        if java:
            return [java, "-jar", "server.jar", "nogui"]

    raise ServerStartError(SERVER_FILE_NOT_FOUND)


def resolve_world_path(config):
    """Locate the world data that gets backed up"""
    if config.settings.world_dir:
        return _resolve(config.server_dir, config.settings.world_dir)

    # bedrock keeps every world under worlds/
    worlds = os.path.join(config.server_dir, "worlds")
    if os.path.isdir(worlds) or find_bedrock_executable(config.server_dir):
        return worlds

    level_name = "world"
    property_path = os.path.join(config.server_dir, SERVER_PROPERTIES_NAME)
    if os.path.exists(property_path):
        level_name = load_properties(property_path).get("level-name") or level_name

    return os.path.join(config.server_dir, level_name)
