"""Runtime loading of encrypted env files into the process environment."""

from __future__ import annotations

import asyncio
import logging
import os
import re
from collections.abc import MutableMapping
from pathlib import Path
from typing import Any, Final

from pydantic import BaseModel, Field

from envlock import crypt
from envlock.exceptions import EnvLockError, FormatError
from envlock.parser import parse

logger = logging.getLogger(__name__)

# Environment variable holding the hex key
ENV_KEY: Final[str] = "ENVLOCK_KEY"

DEFAULT_FILENAME: Final[str] = ".env.lock"

# Variables that let an env file hijack the interpreter or dynamic loader
DANGEROUS_KEYS: Final[frozenset[str]] = frozenset(
    {
        "PYTHONPATH",
        "PYTHONHOME",
        "PYTHONSTARTUP",
        "PYTHONINSPECT",
        "PYTHONBREAKPOINT",
        "PYTHONWARNINGS",
        "LD_PRELOAD",
        "LD_LIBRARY_PATH",
        "LD_AUDIT",
        "DYLD_INSERT_LIBRARIES",
        "DYLD_LIBRARY_PATH",
    }
)

_VALID_KEY_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


class LoadOptions(BaseModel):
    """Options for :func:`config`."""

    path: Path = Field(default_factory=lambda: Path.cwd() / DEFAULT_FILENAME)
    encoding: str = "utf-8"
    override: bool = False
    silent: bool = False
    key_env_var: str = ENV_KEY


def is_valid_env_key(key: str) -> bool:
    """Check if a key is safe to inject into the environment.

    Args:
        key: Environment variable name

    Returns:
        True if key is a plain identifier and not on the blocklist
    """
    if key in DANGEROUS_KEYS:
        return False
    return _VALID_KEY_RE.fullmatch(key) is not None


def _resolve_options(
    options: LoadOptions | None, overrides: dict[str, Any]
) -> LoadOptions:
    if options is None:
        return LoadOptions(**overrides)
    if overrides:
        return LoadOptions(**{**options.model_dump(), **overrides})
    return options


def config(
    options: LoadOptions | None = None,
    *,
    environ: MutableMapping[str, str] | None = None,
    **overrides: Any,
) -> dict[str, str]:
    """Decrypt an env lock file and inject its variables.

    Failures are logged (unless ``silent``) and yield an empty result; they
    are never raised.

    Args:
        options: Load options (keyword overrides are applied on top)
        environ: Environment to read the key from and inject into
            (defaults to ``os.environ``)
        **overrides: Individual LoadOptions fields

    Returns:
        All parsed variables, including ones that were not injected
    """
    options = _resolve_options(options, overrides)
    if environ is None:
        environ = os.environ

    def warn(msg: str) -> None:
        if not options.silent:
            logger.warning(msg)

    def error(msg: str) -> None:
        if not options.silent:
            logger.error(msg)

    key = environ.get(options.key_env_var)
    if not key:
        warn(
            f"{options.key_env_var} environment variable is not set. "
            f"Skipping {options.path.name} decryption."
        )
        return {}

    try:
        content = options.path.read_text(encoding=options.encoding).strip()
    except FileNotFoundError:
        warn(f"{options.path} not found. Skipping decryption.")
        return {}
    except (OSError, UnicodeDecodeError) as e:
        error(f"Failed to read {options.path}: {e}")
        return {}

    if not content:
        warn(f"{options.path} is empty.")
        return {}

    try:
        plaintext = crypt.decrypt(content, key)
    except EnvLockError as e:
        error(
            f"Failed to decrypt {options.path}. "
            f"Please verify that {options.key_env_var} is correct. ({e})"
        )
        return {}

    try:
        parsed = parse(plaintext)
    except FormatError as e:
        error(f"Failed to parse {options.path}: {e}")
        return {}

    injected = 0
    for name, value in parsed.items():
        if not is_valid_env_key(name):
            warn(f"Skipping invalid or dangerous key: {name}")
            continue

        if not options.override and name in environ:
            continue

        environ[name] = value
        injected += 1

    if not options.silent:
        logger.info(
            f"Loaded {injected} environment variable(s) from {options.path.name}"
        )

    return parsed


async def config_async(
    options: LoadOptions | None = None,
    *,
    environ: MutableMapping[str, str] | None = None,
    **overrides: Any,
) -> dict[str, str]:
    """Async version of :func:`config`; file access runs in a worker thread."""
    return await asyncio.to_thread(config, options, environ=environ, **overrides)


# dotenv-compatible aliases
load = config
load_async = config_async
