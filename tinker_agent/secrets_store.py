"""Credential lookup by key (``"<vendor>.api_key"``)."""

from __future__ import annotations

import os
from typing import Dict, Optional

from .provider_routing import VENDORS


class SecretStore:
    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError


class InMemorySecretStore(SecretStore):
    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._values: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def delete(self, key: str) -> None:
        self._values.pop(key, None)


class EnvSecretStore(SecretStore):
    """Reads ``<vendor>.api_key`` from the vendor's environment variable.

    Other keys map to upper-cased env names with dots replaced by underscores.
    Writes only affect the current process environment.
    """

    def __init__(self, environ: Optional[Dict[str, str]] = None) -> None:
        self._environ = os.environ if environ is None else environ

    def _env_name(self, key: str) -> str:
        vendor, _, field_name = key.partition(".")
        descriptor = VENDORS.get(vendor)
        if descriptor is not None and field_name == "api_key":
            return descriptor.api_key_env
        return key.replace(".", "_").replace("-", "_").upper()

    def get(self, key: str) -> Optional[str]:
        return self._environ.get(self._env_name(key)) or None

    def set(self, key: str, value: str) -> None:
        self._environ[self._env_name(key)] = value

    def delete(self, key: str) -> None:
        self._environ.pop(self._env_name(key), None)
