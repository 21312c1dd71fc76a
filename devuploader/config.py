from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from .events import IgnoreRules
from .utils import DEFAULT_CONNECTIONS, DEFAULT_DEBOUNCE_MS


class ConfigurationError(ValueError):
    pass


@dataclass(frozen=True)
class UploadPair:
    source: str
    destination: str


@dataclass
class WatchSettings:
    host: str
    port: int = 22
    username: Optional[str] = None
    connections: int = DEFAULT_CONNECTIONS
    debounce_ms: int = DEFAULT_DEBOUNCE_MS
    ignore_suffixes: Tuple[str, ...] = ()
    ignore_substrings: Tuple[str, ...] = ()
    emit_initial_files: bool = True
    strict_host_key: bool = False
    retries: int = 3
    backoff: float = 0.5

    def __post_init__(self) -> None:
        if self.connections < 1:
            raise ConfigurationError(f"connection count must be at least 1, got {self.connections}")
        if self.debounce_ms < 0:
            raise ConfigurationError(f"debounce must not be negative, got {self.debounce_ms} ms")
        if self.retries < 0:
            raise ConfigurationError(f"retries must not be negative, got {self.retries}")

    @property
    def ignore_rules(self) -> IgnoreRules:
        return IgnoreRules.from_lists(self.ignore_suffixes, self.ignore_substrings)


def parse_upload_pair(text: str) -> UploadPair:
    """Parse ``source:destination``; the last colon separates the two."""
    source, sep, destination = text.rpartition(":")
    if not sep or not source or not destination:
        raise ConfigurationError(f"upload pair must look like <source>:<destination>, got {text!r}")
    return UploadPair(source=os.path.abspath(os.path.expanduser(source)), destination=destination)


def validate_upload_pairs(pairs: Iterable[str], logger: Optional[logging.Logger] = None) -> List[UploadPair]:
    """Return the pairs whose source directory exists, logging every rejected one."""
    logger = logger or logging.getLogger(__name__)
    valid: List[UploadPair] = []
    for text in pairs:
        try:
            pair = parse_upload_pair(text)
        except ConfigurationError as e:
            logger.error("%s", e)
            continue
        if not os.path.isdir(pair.source):
            logger.error("Source directory does not exist, skipping: %s", pair.source)
            continue
        valid.append(pair)
    if not valid:
        raise ConfigurationError("no valid upload pairs remain")
    return valid
