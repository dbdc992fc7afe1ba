"""Credential directories: identifier -> secret."""
from __future__ import annotations

import json
import os
from abc import ABC, abstractmethod
from typing import Dict, Mapping, Optional

import redis

from .. import config


class CredentialDirectory(ABC):
    """Maps a credential identifier to its secret; None when unknown."""

    @abstractmethod
    def lookup(self, identifier: str) -> Optional[str]:
        ...

    def __call__(self, identifier: str) -> Optional[str]:
        return self.lookup(identifier)


class InMemoryCredentialDirectory(CredentialDirectory):
    def __init__(self, secrets: Optional[Mapping[str, str]] = None):
        self._secrets: Dict[str, str] = dict(secrets or {})

    def add(self, identifier: str, secret: str) -> None:
        self._secrets[identifier] = secret

    def lookup(self, identifier: str) -> Optional[str]:
        return self._secrets.get(identifier)


class JsonFileCredentialDirectory(CredentialDirectory):
    """{"<id>": {"secret": "..."}}; re-read on every lookup."""

    def __init__(self, path: str):
        self.path = path

    def load(self) -> Dict[str, Dict[str, str]]:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            return json.load(f)

    def lookup(self, identifier: str) -> Optional[str]:
        entry = self.load().get(identifier)
        if not entry:
            return None
        return entry.get("secret")


class RedisCredentialDirectory(CredentialDirectory):
    """Secret in field 'secret' of hash <prefix><id>."""

    def __init__(self, url: Optional[str] = None, prefix: Optional[str] = None, client=None):
        self.r = client if client is not None else redis.from_url(url or config.REDIS_URL, decode_responses=True)
        self.prefix = config.REDIS_CREDENTIAL_PREFIX if prefix is None else prefix

    def _key(self, identifier: str) -> str:
        return f"{self.prefix}{identifier}"

    def put(self, identifier: str, secret: str) -> None:
        self.r.hset(self._key(identifier), mapping={"secret": secret})

    def remove(self, identifier: str) -> bool:
        return self.r.delete(self._key(identifier)) == 1

    def lookup(self, identifier: str) -> Optional[str]:
        val = self.r.hget(self._key(identifier), "secret")
        if isinstance(val, bytes):
            val = val.decode("utf-8")
        return val


def load_directory(backend: Optional[str] = None) -> CredentialDirectory:
    backend = (backend or config.CREDENTIAL_BACKEND).lower()
    if backend == "redis":
        return RedisCredentialDirectory()
    if backend == "file":
        return JsonFileCredentialDirectory(config.CREDENTIALS_FILE)
    raise ValueError(f"unknown credential backend: {backend}")
