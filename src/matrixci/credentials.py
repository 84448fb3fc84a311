# credentials.py
from __future__ import annotations

import os
from typing import Iterable, List, Mapping, Optional, Protocol

from .model import Bare, ConfigurationError, CredentialRef, EnvVar, Named


class CredentialStore(Protocol):
    def lookup(self, credential_id: str) -> Optional[str]: ...


class EnvironmentCredentialStore:
    """Reads secrets from the orchestrating process' environment."""

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self.environ = environ if environ is not None else os.environ

    def lookup(self, credential_id: str) -> Optional[str]:
        return self.environ.get(credential_id)


def credential_vars(refs: Iterable[CredentialRef], store: CredentialStore) -> List[EnvVar]:
    """
    Turn credential references into literal env entries.

    Raises ConfigurationError for an unknown credential id so the run stops
    before any task is scheduled.
    """
    out: List[EnvVar] = []
    for ref in refs:
        if not isinstance(ref, (Bare, Named)):
            raise ConfigurationError(f"Unsupported credential reference: {ref!r}")
        secret = store.lookup(ref.id)
        if secret is None:
            raise ConfigurationError(f"Credential {ref.id!r} is not available")
        out.append(EnvVar(ref.env_name, secret))
    return out
