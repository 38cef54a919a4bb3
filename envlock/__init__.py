"""envlock - Encrypted environment files.

envlock keeps configuration secrets out of plaintext by providing:
- AES-256-GCM envelopes with a versioned, checksummed wire format
- Throttling of repeated failed decryption attempts per key
- A dotenv-style parser and serializer
- Runtime loading of encrypted files into the process environment
- CLI tool for encrypting and decrypting files
"""

from __future__ import annotations

from envlock import crypt, parser
from envlock.config import LoadOptions, config, config_async, load, load_async
from envlock.crypt import (
    clear_rate_limit,
    decrypt,
    encrypt,
    generate_key,
    is_encrypted,
    parse_envelope,
)
from envlock.exceptions import (
    DecryptionError,
    EncryptionError,
    EnvLockError,
    FormatError,
    InputTooLargeError,
    InvalidInputError,
    InvalidKeyError,
    RateLimitedError,
    UnclosedQuoteError,
)
from envlock.parser import parse, stringify
from envlock.ratelimit import AttemptTracker, RateLimitPolicy, hash_key

__version__ = "0.1.0"

__all__ = [
    # Core classes
    "AttemptTracker",
    "LoadOptions",
    "RateLimitPolicy",
    # Functions
    "clear_rate_limit",
    "config",
    "config_async",
    "decrypt",
    "encrypt",
    "generate_key",
    "hash_key",
    "is_encrypted",
    "load",
    "load_async",
    "parse",
    "parse_envelope",
    "stringify",
    # Modules
    "crypt",
    "parser",
    # Exceptions
    "EnvLockError",
    "InvalidInputError",
    "InputTooLargeError",
    "InvalidKeyError",
    "EncryptionError",
    "DecryptionError",
    "RateLimitedError",
    "FormatError",
    "UnclosedQuoteError",
]
