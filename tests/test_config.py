import os
import tempfile
import unittest

from modules.config import (
    SupervisorSettings,
    bootstrap,
    extract_property_overrides,
    load_settings,
    parse_arguments,
    read_arguments_file,
    resolve_server_command,
    resolve_world_path,
)
from modules.errors import (
    FatalConfigurationError,
    InvalidStartArgumentsError,
    ServerStartError,
)
from tests.helpers import write_tree


class ArgumentTests(unittest.TestCase):
    def test_reserved_arguments(self):
        config = parse_arguments(
            [
                '--backup-location="/srv/backups"',
                "--server-location=/srv/bedrock",
                "--bedrock-commands=gamerule showcoordinates true",
                '--bedrock-commands="say hello"',
                "--max-players=5",
            ],
            "/srv",
        )

        self.assertEqual("/srv/backups", config.backup_dir)
        self.assertEqual("/srv/bedrock", config.server_dir)
        self.assertEqual(("gamerule showcoordinates true", "say hello"), config.startup_commands)
        self.assertEqual({"max-players": "5"}, dict(config.overridden_properties))

    def test_defaults_are_relative_to_root(self):
        config = parse_arguments(["--max-players=5"], "/srv/mc")
        self.assertEqual("/srv/mc/backup", config.backup_dir)
        self.assertEqual("/srv/mc", config.server_dir)

    def test_empty_backup_location_is_invalid(self):
        with self.assertRaises(InvalidStartArgumentsError):
            parse_arguments(["--backup-location="], "/srv")

    def test_overrides_need_a_value(self):
        overrides = extract_property_overrides(["--motd=hi", "--pvp", "nogui", "--=x"])
        self.assertEqual({"motd": "hi"}, overrides)

    def test_overrides_are_read_only(self):
        config = parse_arguments(["--motd=hi"], "/srv")
        with self.assertRaises(TypeError):
            config.overridden_properties["motd"] = "changed"


class SettingsTests(unittest.TestCase):
    def test_defaults(self):
        settings = load_settings(None)
        self.assertEqual(SupervisorSettings(), settings)
        self.assertFalse(settings.supports_hold_saves)

    def test_table_values_and_dashed_keys(self):
        settings = load_settings(
            {
                "stop-timeout": 5,
                "ready_markers": ["Done"],
                "hold_saves_command": "save hold",
                "hold_saves_confirm": "ready to be copied",
            }
        )
        self.assertEqual(5, settings.stop_timeout)
        self.assertEqual(("Done",), settings.ready_markers)
        self.assertTrue(settings.supports_hold_saves)

    def test_unknown_keys_and_triggers_are_ignored(self):
        with self.assertLogs("modules.config", level="WARNING"):
            settings = load_settings({"colour": "blue", "backup_trigger": "hourly"})
        self.assertEqual("manual", settings.backup_trigger)


class BootstrapTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.root = self._tmp.name

    def test_arguments_are_saved_for_the_next_run(self):
        first = bootstrap(["--backup-location=saves", "--motd=hi"], self.root)
        second = bootstrap([], self.root)

        self.assertEqual(first, second)
        self.assertEqual(["--backup-location=saves", "--motd=hi"], read_arguments_file(self.root))

    def test_new_arguments_replace_saved_ones(self):
        bootstrap(["--backup-location=old"], self.root)
        config = bootstrap(["--backup-location=new"], self.root)

        self.assertEqual(os.path.join(self.root, "new"), config.backup_dir)
        self.assertEqual(["--backup-location=new"], read_arguments_file(self.root))

    def test_nothing_to_go_on(self):
        with self.assertRaises(InvalidStartArgumentsError):
            bootstrap([], self.root)

    def test_default_config_is_created_and_read(self):
        config = bootstrap(["--backup-location=saves"], self.root)

        self.assertTrue(os.path.exists(os.path.join(self.root, "mcpal.toml")))
        self.assertEqual(SupervisorSettings(), config.settings)

    def test_supervisor_table_is_applied(self):
        with open(os.path.join(self.root, "mcpal.toml"), "w") as f:
            f.write('[supervisor]\nstop_timeout = 7.5\nbackup_trigger = "on-stop"\n')

        config = bootstrap(["--backup-location=saves"], self.root)

        self.assertEqual(7.5, config.settings.stop_timeout)
        self.assertEqual("on-stop", config.settings.backup_trigger)

    def test_broken_config_is_fatal(self):
        with open(os.path.join(self.root, "mcpal.toml"), "w") as f:
            f.write("[supervisor\n")

        with self.assertRaises(FatalConfigurationError):
            bootstrap(["--backup-location=saves"], self.root)


class ResolveTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.root = self._tmp.name

    def config(self, **settings):
        return parse_arguments(
            ["--server-location=server"], self.root, SupervisorSettings(**settings)
        )

    def test_configured_command_wins(self):
        config = self.config(server_command=("./run.sh", "--nogui"))
        self.assertEqual(["./run.sh", "--nogui"], resolve_server_command(config))

    def test_bedrock_executable_is_found(self):
        write_tree(os.path.join(self.root, "server"), {"bedrock_server": b""})
        config = self.config()

        self.assertEqual(
            [os.path.join(config.server_dir, "bedrock_server")], resolve_server_command(config)
        )
        self.assertEqual(os.path.join(config.server_dir, "worlds"), resolve_world_path(config))

    def test_no_server_file(self):
        os.makedirs(os.path.join(self.root, "server"))
        with self.assertRaises(ServerStartError):
            resolve_server_command(self.config())

    def test_world_follows_level_name(self):
        write_tree(os.path.join(self.root, "server"), {"server.properties": b"level-name=survival\n"})
        config = self.config()
        self.assertEqual(os.path.join(config.server_dir, "survival"), resolve_world_path(config))

    def test_world_defaults_to_world(self):
        config = self.config()
        self.assertEqual(os.path.join(config.server_dir, "world"), resolve_world_path(config))

    def test_configured_world_dir(self):
        config = self.config(world_dir="data/overworld")
        self.assertEqual(
            os.path.join(config.server_dir, "data", "overworld"), resolve_world_path(config)
        )


if __name__ == "__main__":
    unittest.main()
