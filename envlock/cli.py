"""Command-line interface for envlock."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import NoReturn

import click
from rich.console import Console

from envlock import crypt
from envlock.config import DEFAULT_FILENAME, ENV_KEY
from envlock.exceptions import EnvLockError

console = Console()

_RULE = "=" * 70


def _error(message: str) -> NoReturn:
    console.print(f"[red]Error:[/red] {message}")
    sys.exit(1)


def _read_input(path: Path) -> str:
    """Read an input file, exiting with an error if it is unusable."""
    if not path.is_file():
        _error(f"Input file not found: {path}")

    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        _error(f"Failed to read input file: {e}")


def _print_key(key: str, title: str) -> None:
    console.print(_RULE, style="dim", highlight=False)
    console.print(title)
    console.print(_RULE, style="dim", highlight=False)
    console.print(f"\n[bold]{ENV_KEY}={key}[/bold]\n", highlight=False)
    console.print(_RULE, style="dim", highlight=False)


@click.group()
@click.version_option()
def main() -> None:
    """envlock - Encrypt .env files into portable, versioned lock files."""
    pass


@main.command(name="encrypt")
@click.option(
    "--key",
    "-k",
    envvar=ENV_KEY,
    help=f"Encryption key (hex). Generated if omitted. Can also use {ENV_KEY}",
)
@click.option(
    "--input", "-i", "input_path", default=".env", help="Input file (default: .env)"
)
@click.option(
    "--output",
    "-o",
    "output_path",
    default=DEFAULT_FILENAME,
    help=f"Output file (default: {DEFAULT_FILENAME})",
)
def encrypt_command(key: str | None, input_path: str, output_path: str) -> None:
    """Encrypt a .env file into a lock file."""
    source = Path(input_path).resolve()
    target = Path(output_path).resolve()

    content = _read_input(source)
    if not content.strip():
        console.print("[yellow]Warning:[/yellow] Input file is empty")

    is_new_key = False
    if not key:
        key = crypt.generate_key()
        is_new_key = True
        console.print("No encryption key provided. Generated a new key.")

    try:
        encrypted = crypt.encrypt(content, key)
    except EnvLockError as e:
        _error(f"Encryption failed: {e}")

    try:
        target.write_text(encrypted, encoding="utf-8")
    except OSError as e:
        _error(f"Failed to write output file: {e}")

    console.print(f"[green]✓[/green] Encrypted {source} → {target}")

    if is_new_key:
        console.print()
        _print_key(
            key, "[yellow]IMPORTANT: Save this encryption key securely![/yellow]"
        )
        console.print(
            "[yellow]Warning:[/yellow] You will need this key to decrypt "
            f"{target.name}. Without it the data cannot be recovered!"
        )


@main.command(name="decrypt")
@click.option(
    "--key", "-k", envvar=ENV_KEY, help=f"Decryption key (hex). Can also use {ENV_KEY}"
)
@click.option(
    "--input",
    "-i",
    "input_path",
    default=DEFAULT_FILENAME,
    help=f"Input file (default: {DEFAULT_FILENAME})",
)
def decrypt_command(key: str | None, input_path: str) -> None:
    """Decrypt a lock file and print it to stdout."""
    source = Path(input_path).resolve()

    if not key:
        _error(
            f"Decryption key not provided. Set {ENV_KEY} environment variable "
            "or use --key option"
        )

    content = _read_input(source).strip()
    if not content:
        _error("Input file is empty")

    try:
        decrypted = crypt.decrypt(content, key)
    except EnvLockError as e:
        _error(str(e))

    # Plain echo: secrets must not be interpreted as rich markup
    click.echo(decrypted)


@main.command(name="generate-key")
def generate_key_command() -> None:
    """Generate a new random encryption key."""
    key = crypt.generate_key()
    _print_key(key, "[green]Generated new encryption key:[/green]")
    console.print("Save this key securely. You will need it to encrypt/decrypt files.")


main.add_command(generate_key_command, name="genkey")


if __name__ == "__main__":
    main()
