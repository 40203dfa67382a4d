"""
Rudder environment merge: configuration files as a low-priority value layer.

Scope
- load(): read a .env / YAML / JSON / TOML file into a flat key/value map.
- convert(): turn one loaded value into a flag's kind.
- merge(): resolve a loaded map against one command level's flags.

Formats (chosen by suffix)
- .yaml / .yml: PyYAML safe_load.
- .json: json.
- .toml: tomllib.
- anything else: dotenv text through python-dotenv.

Normalization
- Nested mappings are flattened with "_" joined keys
  ({"db": {"port": 5}} -> {"db_port": 5}); sequences become lists.
- Keys match flag names exactly first, then case-insensitively with "-" and
  "_" treated alike (COUNT, Count and count all reach the flag 'count').

Conversion
- string: str(value); repeatable flags accept lists, JSON array strings, or
  comma-separated strings.
- number: floats (booleans are rejected).
- boolean: true/yes/1/on and false/no/0/off, or a real boolean.
- custom: the flag's converter receives the raw value (awaited if needed).
- Values are enum-checked after conversion.
- A value that cannot be converted is skipped with an EnvValueWarning.
"""
import io
import json
import logging
import pathlib
import tomllib
from collections.abc import Mapping

import yaml
from dotenv import dotenv_values

from .coercion import parse_number, parse_boolean, check_choices
from .faults import *
from .flags import Kind
from .utils import resolve

logger = logging.getLogger(__name__)


def flatten(mapping, /, prefix=""):
    """
    Flatten nested mappings into a single level with "_" joined keys.
    """
    flat = {}
    for key, value in mapping.items():
        key = f"{prefix}_{key}" if prefix else str(key)
        if isinstance(value, Mapping):
            flat.update(flatten(value, key))
        elif isinstance(value, list | tuple):
            flat[key] = list(value)
        else:
            flat[key] = value
    return flat


def load(path, /):
    """
    Read a configuration file into a flat key/value map.

    raises
    - EnvFileNotFoundError: the path does not exist or cannot be read.
    - EnvFileFormatError: the content cannot be parsed or is not a mapping.
    """
    path = pathlib.Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exception:
        raise EnvFileNotFoundError(
            "environment file %r cannot be read" % str(path),
            path=str(path),
            hint="check that the file exists and is readable",
            docs=getdoc(FaultCode.ENV_FILE_NOT_FOUND),
        ) from exception

    suffix = path.suffix.lower()
    try:
        match suffix:
            case ".yaml" | ".yml":
                data = yaml.safe_load(text)
            case ".json":
                data = json.loads(text) if text.strip() else {}
            case ".toml":
                data = tomllib.loads(text)
            case _:
                data = {
                    key: value for key, value in dotenv_values(stream=io.StringIO(text)).items()
                    if value is not None
                }
    except (yaml.YAMLError, json.JSONDecodeError, tomllib.TOMLDecodeError) as exception:
        raise EnvFileFormatError(
            "environment file %r is malformed: %s" % (str(path), exception),
            path=str(path),
            hint="fix the %s syntax" % (suffix.lstrip(".") or "dotenv"),
            docs=getdoc(FaultCode.ENV_FILE_FORMAT),
        ) from exception

    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise EnvFileFormatError(
            "environment file %r must hold key/value pairs" % str(path),
            path=str(path),
            hint="use a top-level mapping",
            docs=getdoc(FaultCode.ENV_FILE_FORMAT),
        )

    logger.debug("loaded %d value(s) from %s", len(data), path)
    return flatten(data)


def match(key, flags, /):
    """
    Return the flag of flags that key refers to, or None.
    """
    if (flag := flags.get(key)) is not None:
        return flag
    normalized = str(key).lower().replace("-", "_")
    for flag in flags:
        if flag.name.lower() == normalized:
            return flag
    return None


def _sequence(value):
    """
    Normalize a repeatable value: lists stay, JSON arrays parse, strings split on commas.
    """
    if isinstance(value, list | tuple):
        return list(value)
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return [part.strip() for part in value.split(",") if part.strip()]
        if isinstance(parsed, list):
            return parsed
    return [value]


async def _scalar(flag, value):
    match flag.kind:
        case Kind.STRING:
            if isinstance(value, list | dict):
                raise ValueError("expected a single value, got %r" % (value,))
            return str(value)
        case Kind.NUMBER:
            if isinstance(value, bool):
                raise ValueError("expected a number, got %r" % value)
            return float(value) if isinstance(value, int | float) else parse_number(str(value))
        case Kind.BOOLEAN:
            return parse_boolean(value)
        case Kind.CUSTOM:
            return await resolve(flag.convert(value))


async def convert(flag, value, /):
    """
    Convert one loaded value to flag's kind and enum-check it.

    Raises ValueError (or the custom converter's exception) when the value
    does not fit, and EnumViolationError for values outside the choices.
    """
    if flag.flag_only:
        return parse_boolean(value)
    if flag.multiple:
        return [check_choices(flag, await _scalar(flag, item)) for item in _sequence(value)]
    return check_choices(flag, await _scalar(flag, value))


async def merge(config, flags, /, *, shell=False):
    """
    Resolve config against flags and return {flag name: converted value}.

    Keys without a matching flag are ignored; unconvertible values are skipped
    with an EnvValueWarning.
    """
    values = {}
    for key, value in config.items():
        if value is None or (flag := match(key, flags)) is None:
            continue
        try:
            values[flag.name] = await convert(flag, value)
        except Exception as exception:
            logger.debug("skipping %s=%r: %s", key, value, exception)
            trigger(EnvValueWarning(
                "could not convert environment value %r for flag %r: %s" % (value, flag.canonical, exception),
                key=key,
                flag=flag.name,
                value=value,
                hint="fix the value for %r in the environment file" % key,
                docs=getdoc(FaultCode.ENV_VALUE),
            ), shell=shell)
    return values


__all__ = (
    "flatten",
    "load",
    "match",
    "convert",
    "merge",
)
