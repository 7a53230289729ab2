import logging
import os
import shutil

from dataclasses import dataclass, field

from modules.constants_classes import (
    SERVER_PROPERTIES_NAME,
    SERVER_PROPERTIES_TEMPLATE_NAME,
)
from modules.errors import FatalConfigurationError

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class PropertyOverrideResult:
    applied: dict = field(default_factory=dict)
    rejected: dict = field(default_factory=dict)


def parse_properties(text):
    """Parse key=value / key:value lines, skipping blanks and # or ! comments"""
    properties = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith(("#", "!")):
            continue

        # split on whichever separator comes first
        separators = [i for i in (line.find("="), line.find(":")) if i != -1]
        if not separators:
            properties[line] = ""
            continue

        index = min(separators)
        properties[line[:index].strip()] = line[index + 1 :].strip()

    return properties


def load_properties(path):
    with open(path, encoding="utf-8") as f:
        return parse_properties(f.read())


def store_properties(path, properties, comment=None):
    with open(path, "w", encoding="utf-8") as f:
        if comment:
            f.write(f"#{comment}\n")
        for key, value in properties.items():
            f.write(f"{key}={value}\n")


def apply_overrides(properties, overrides):
    """
    Apply overrides whose key already exists in properties.

    Unknown keys are never added, they end up in the rejected set instead.
    properties is updated in place.
    """
    applied = {}
    rejected = {}
    for key, value in overrides.items():
        if key in properties:
            applied[key] = (properties[key], value)
            properties[key] = value
        else:
            rejected[key] = value

    return PropertyOverrideResult(applied=applied, rejected=rejected)


def report_overrides(result):
    if result.applied:
        log.info("Overriding default server properties from template")
        for key, (old, new) in result.applied.items():
            log.info(f"- {key} -> {new} [{old}]")

    if result.rejected:
        log.warning("Invalid properties in parameters")
        for key, value in result.rejected.items():
            log.warning(f"- {key} -> {value}")


# rebuild server.properties from the template plus the operator's overrides
def process_server_properties(server_dir, overrides):
    property_path = os.path.join(server_dir, SERVER_PROPERTIES_NAME)
    template_path = os.path.join(server_dir, SERVER_PROPERTIES_TEMPLATE_NAME)

    if not os.path.exists(template_path):
        if os.path.exists(property_path):
            log.info(
                f"No {SERVER_PROPERTIES_TEMPLATE_NAME} found. "
                f"Creating copy from the current {SERVER_PROPERTIES_NAME}"
            )
            shutil.copyfile(property_path, template_path)
        else:
            raise FatalConfigurationError(
                f"Please provide {SERVER_PROPERTIES_NAME} or "
                f"{SERVER_PROPERTIES_TEMPLATE_NAME} file in {server_dir}"
            )

    if os.path.exists(property_path):
        os.remove(property_path)

    properties = load_properties(template_path)
    result = apply_overrides(properties, dict(overrides))
    report_overrides(result)

    store_properties(property_path, properties, comment="Storing update properties")

    return result
