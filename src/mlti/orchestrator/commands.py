"""Turning raw command text and names into ProcessSpecs."""

import json
import os
import re
import shlex
import time
from pathlib import Path
from typing import Optional, Union

import psutil
import structlog

from ..core.config import MltiConfig
from ..core.errors import ConfigError
from .process import ProcessSpec


logger = structlog.get_logger()


PASTELS = [
    "#FFB3B3",
    "#C1EFFF",
    "#B5FFD6",
    "#FFDBA4",
    "#B5FFB9",
    "#FF7878",
    "#E0C097",
    "#FFE9AE",
]

# shorthand prefix -> expansion
SHORTHANDS = {
    "npm:": "npm run ",
    "pnpm:": "pnpm ",
    "yarn:": "yarn ",
}


class ColorFactory:
    """Hands out palette colors in a cycle."""

    def __init__(self, palette: Optional[list[str]] = None):
        self.palette = palette or PASTELS
        self._index = 0

    def generate(self) -> str:
        color = self.palette[self._index]
        self._index = (self._index + 1) % len(self.palette)
        return color


def expand_shorthand(command: str) -> str:
    """Expand `npm:build` style shorthands into real commands."""
    stripped = command.strip()
    for prefix, expansion in SHORTHANDS.items():
        if stripped.startswith(prefix):
            return expansion + stripped[len(prefix):]
    return stripped


def shorthand_script(command: str) -> Optional[str]:
    """Script name of a shorthand command, if it is one."""
    stripped = command.strip()
    for prefix in SHORTHANDS:
        if stripped.startswith(prefix):
            return stripped[len(prefix):] or None
    return None


def load_package_scripts(path: Union[str, Path]) -> Optional[list[str]]:
    """Script names of a package.json in sorted order, or None without one."""
    path = Path(path)
    if not path.is_file():
        return None

    try:
        data = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Could not read {path}: {e}", config_path=str(path))

    scripts = data.get("scripts") if isinstance(data, dict) else None
    return sorted(scripts) if isinstance(scripts, dict) else []


def _split_shorthand(command: str) -> Optional[tuple[str, str]]:
    stripped = command.strip()
    if " " in stripped:
        return None
    for prefix in SHORTHANDS:
        if stripped.startswith(prefix):
            return prefix, stripped[len(prefix):]
    return None


def expand_commands(
    commands: list[str],
    package_json: Union[str, Path] = "package.json",
) -> list[str]:
    """
    Expand shorthand patterns against package.json scripts.

    `npm:<pattern>` becomes one `npm:<script>` command per script whose name
    matches the regular expression (unanchored, so `^build$` for an exact
    name). Without a package.json, or when nothing matches, the command is
    kept as a literal script name.
    """
    scripts: Optional[list[str]] = None
    loaded = False
    expanded = []

    for command in commands:
        shorthand = _split_shorthand(command)
        if shorthand is None:
            expanded.append(command)
            continue

        if not loaded:
            scripts = load_package_scripts(package_json)
            loaded = True

        prefix, pattern = shorthand
        matches = _match_scripts(scripts or [], pattern)
        if matches:
            expanded.extend(prefix + script for script in matches)
        else:
            expanded.append(command)

    return expanded


def _match_scripts(scripts: list[str], pattern: str) -> list[str]:
    try:
        regex = re.compile(pattern)
    except re.error as e:
        logger.debug("script_pattern_invalid", pattern=pattern, error=str(e))
        return []
    return [script for script in scripts if regex.search(script)]


def _replace_template(template: str, key: str, value: str) -> str:
    if template == key:
        return value
    return template.replace("{%s}" % key, value)


def resolve_name(
    command: str,
    index: int,
    name: Optional[str] = None,
    prefix: Optional[str] = None,
    prefix_length: int = 10,
    timestamp_format: str = "%Y-%m-%d %H:%M:%S",
) -> str:
    """
    Resolve the display name of a task.

    A prefix template wins, then an explicit name, then the script name of
    a package-manager shorthand, then the task index.
    """
    if prefix is not None:
        replacements = [
            ("index", str(index)),
            ("command", command),
            ("name", name or command),
            ("pid", str(os.getpid())),
            ("time", time.strftime(timestamp_format)),
            ("none", ""),
        ]
        result = prefix
        for key, value in replacements:
            result = _replace_template(result, key, value)
        return result[:prefix_length]

    if name:
        return name

    return shorthand_script(command) or str(index)


def parse_command(command: str) -> tuple[str, tuple[str, ...]]:
    """Split command text into executable and arguments."""
    try:
        parts = shlex.split(expand_shorthand(command))
    except ValueError as e:
        raise ConfigError(f"Could not parse command {command!r}: {e}")
    if not parts:
        raise ConfigError("Empty command")
    return parts[0], tuple(parts[1:])


def build_specs(config: MltiConfig) -> list[ProcessSpec]:
    """Build one ProcessSpec per configured command, in order."""
    colors = ColorFactory()
    hidden = set(config.hide)
    output = config.output
    specs = []

    commands = expand_commands(config.commands, config.package_json)

    for index, command in enumerate(commands):
        executable, args = parse_command(command)
        explicit_name = config.names[index] if index < len(config.names) else None
        name = resolve_name(
            command,
            index,
            name=explicit_name,
            prefix=output.prefix,
            prefix_length=output.prefix_length,
            timestamp_format=output.timestamp_format,
        )
        is_hidden = str(index) in hidden or name in hidden
        specs.append(ProcessSpec(
            executable=executable,
            args=args,
            name=name,
            index=index,
            color=None if is_hidden else colors.generate(),
            hidden=is_hidden,
            command=command,
        ))

    return specs


def resolve_max_processes(
    value: Optional[Union[int, str]],
    cpu_count: Optional[int] = None,
) -> Optional[int]:
    """
    Resolve a concurrency cap.

    None, "" and 0 mean unbounded (None). "50%" is a share of the logical
    CPUs, never less than 1.
    """
    if value is None:
        return None

    if isinstance(value, int):
        if value < 0:
            raise ConfigError(f"max-processes must not be negative: {value}")
        return value or None

    text = value.strip()
    if not text:
        return None

    if text.endswith("%"):
        try:
            percentage = int(text[:-1])
        except ValueError:
            raise ConfigError(f"Invalid max-processes percentage: {value}")
        if percentage <= 0:
            raise ConfigError(f"max-processes percentage must be positive: {value}")
        cpus = cpu_count if cpu_count is not None else (psutil.cpu_count(logical=True) or 1)
        return max(1, int(cpus * percentage / 100))

    try:
        number = int(text)
    except ValueError:
        raise ConfigError(f"Invalid max-processes: {value}")
    return resolve_max_processes(number)
