import asyncio
import logging
import os

from modules.config import find_bedrock_executable, resolve_world_path
from modules.constants_classes import (
    EULA_NOT_FOUND,
    WORLD_DID_NOT_EXIST,
    WORLD_STILL_MISSING,
)
from modules.errors import FatalConfigurationError
from modules.properties import parse_properties
from modules.serverstate import PreflightFailure

log = logging.getLogger(__name__)


class PreflightGuard:
    """
    Recognises the two startup failures MCpal knows how to fix and fixes them.

    A missing EULA acceptance is fixed by writing eula=true, missing world
    data by waiting for it to show up. Applying a fix that is already in
    place does nothing.
    """

    def __init__(self, config, sleep=asyncio.sleep):
        self.config = config
        self.settings = config.settings
        self._sleep = sleep

    @property
    def eula_path(self):
        return os.path.join(self.config.server_dir, self.settings.eula_file)

    @property
    def world_path(self):
        return resolve_world_path(self.config)

    def is_ready_line(self, line):
        return any(marker in line for marker in self.settings.ready_markers)

    def classify_line(self, line):
        if any(marker in line for marker in self.settings.eula_markers):
            return PreflightFailure.EULA
        if any(marker in line for marker in self.settings.world_missing_markers):
            return PreflightFailure.WORLD
        return None

    def classify_exit(self):
        """Why did the server exit before it was up, judging by files on disk"""
        if self.eula_required() and not self.eula_accepted():
            return PreflightFailure.EULA
        return None

    def eula_required(self):
        # bedrock servers ship without an eula file
        if not self.settings.eula_file:
            return False
        return find_bedrock_executable(self.config.server_dir) is None

    def eula_accepted(self):
        if not os.path.exists(self.eula_path):
            return False
        with open(self.eula_path, encoding="utf-8") as f:
            values = parse_properties(f.read())
        return values.get("eula", "").lower() == "true"

    def accept_eula(self):
        """Write eula=true, returns False when it was accepted already"""
        if self.eula_accepted():
            return False

        log.warning(EULA_NOT_FOUND)
        lines = []
        if os.path.exists(self.eula_path):
            with open(self.eula_path, encoding="utf-8") as f:
                lines = [
                    line
                    for line in f.read().splitlines()
                    if not line.strip().startswith("eula")
                ]
        else:
            lines.append("#By changing the setting below to TRUE you are indicating your agreement to the EULA")
            lines.append("#https://aka.ms/MinecraftEULA")
        lines.append("eula=true")

        with open(self.eula_path, "w", encoding="utf-8") as f:
            f.write("\n".join(lines) + "\n")

        log.info(f"accepted the EULA in {self.eula_path}")
        return True

    def world_exists(self):
        return os.path.isdir(self.world_path)

    async def wait_for_world(self):
        """Wait with growing delays for the world directory to appear"""
        if self.world_exists():
            return

        log.warning(WORLD_DID_NOT_EXIST)
        log.warning(f"waiting for world data at {self.world_path}")

        delay = self.settings.world_backoff
        for attempt in range(1, self.settings.world_retries + 1):
            log.info(
                f"world check {attempt}/{self.settings.world_retries} in {delay:g} seconds"
            )
            await self._sleep(delay)
            if self.world_exists():
                log.info(f"world data found at {self.world_path}")
                return
            delay *= 2

        raise FatalConfigurationError(WORLD_STILL_MISSING)
