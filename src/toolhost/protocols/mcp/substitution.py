"""Placeholder resolution for server environment values and headers.

Supported forms (anywhere inside the value)::

    ${VAR}               environment variable, required
    ${VAR:-default}      environment variable with a fallback
    ${env:VAR}           explicit environment source, required
    ${file:/path}        file contents, stripped of surrounding whitespace

Values are resolved once, when a transport is opened; nothing re-reads the
environment afterwards.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from pathlib import Path

from toolhost.protocols.errors import ConfigurationError

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\$\{([^}]+)\}")


def resolve_value(value: str) -> str:
    """Return *value* with every placeholder replaced.

    An unreadable file is logged and its placeholder kept verbatim.

    Raises:
        ConfigurationError: If a required variable is unset.  The message
            names every missing variable.
    """
    missing: list[str] = []
    resolved = _PLACEHOLDER.sub(lambda match: _replace(match, missing), value)
    if missing:
        msg = f"Missing required environment variables: {', '.join(dict.fromkeys(missing))}"
        raise ConfigurationError(msg)
    return resolved


def resolve_mapping(values: Mapping[str, str]) -> dict[str, str]:
    """Resolve every value of an env/header mapping.

    Raises:
        ConfigurationError: If any value needs a variable that is unset.
    """
    missing: list[str] = []
    resolved: dict[str, str] = {}
    for key, val in values.items():
        resolved[key] = _PLACEHOLDER.sub(lambda match: _replace(match, missing), val)
    if missing:
        msg = f"Missing required environment variables: {', '.join(dict.fromkeys(missing))}"
        raise ConfigurationError(msg)
    return resolved


def _replace(match: re.Match[str], missing: list[str]) -> str:
    inner = match.group(1)
    original = match.group(0)

    source, sep, rest = inner.partition(":")
    if sep and source == "env":
        return _lookup(rest, original, missing)
    if sep and source == "file":
        try:
            return Path(rest).read_text(encoding="utf-8").strip()
        except OSError as exc:
            logger.warning("Cannot read secret file %s: %s", rest, exc)
            return original

    name, sep, default = inner.partition(":-")
    if sep:
        return os.environ.get(name, default)
    return _lookup(inner, original, missing)


def _lookup(name: str, original: str, missing: list[str]) -> str:
    value = os.environ.get(name)
    if value is None:
        missing.append(name)
        return original
    return value
