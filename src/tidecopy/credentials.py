# src/tidecopy/credentials.py
"""
Credential resolution for storage backends.

Credentials are resolved once per run from an explicitly injected environment
mapping, never from ``os.environ`` directly, so that every missing field is
reported by name before any network call is attempted.
"""

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

from tidecopy.exceptions import MissingCredential
from tidecopy.locator import Backend

logger: logging.Logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CredentialField:
    """
    Describes one credential field a backend consumes.

    Attributes:
        env_var (str): The environment variable holding the value.
        required (bool): Whether resolution fails when the value is absent.
    """

    env_var: str
    required: bool = True


# One row per backend. Adding a backend is a data change here.
CREDENTIAL_FIELDS: Mapping[Backend, Tuple[CredentialField, ...]] = MappingProxyType(
    {
        Backend.LOCAL: (),
        Backend.S3: (
            CredentialField("ACCESS_KEY_ID"),
            CredentialField("SECRET_ACCESS_KEY"),
            CredentialField("DEFAULT_REGION"),
            CredentialField("SESSION_TOKEN", required=False),
            CredentialField("ENDPOINT_URL", required=False),
        ),
    }
)


@dataclass(frozen=True)
class Credentials:
    """
    Read-only authentication material for one backend.

    Attributes:
        backend (Backend): The backend these credentials belong to.
        fields (Mapping[str, str]): Resolved values keyed by env var name.
    """

    backend: Backend
    fields: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType({}), repr=False
    )

    def get(self, name: str) -> Optional[str]:
        """
        Looks up a resolved field.

        Args:
            name (str): The env var name of the field.

        Returns:
            Optional[str]: The value, or None for an unset optional field.
        """
        return self.fields.get(name)

    @property
    def is_temporary(self) -> bool:
        """True when a session token puts the credentials in temporary mode."""
        return bool(self.fields.get("SESSION_TOKEN"))

    def as_boto_dict(self) -> Dict[str, str]:
        """
        Returns the credentials as keyword arguments for an aiobotocore client.

        Returns:
            Dict[str, str]: A dictionary of client parameters.
        """
        params: Dict[str, str] = {
            "aws_access_key_id": self.fields["ACCESS_KEY_ID"],
            "aws_secret_access_key": self.fields["SECRET_ACCESS_KEY"],
            "region_name": self.fields["DEFAULT_REGION"],
        }
        if self.fields.get("SESSION_TOKEN"):
            params["aws_session_token"] = self.fields["SESSION_TOKEN"]
        if self.fields.get("ENDPOINT_URL"):
            params["endpoint_url"] = self.fields["ENDPOINT_URL"]
        return params


class CredentialResolver:
    """Resolves credentials from per-run overrides and an environment mapping."""

    def __init__(
        self,
        env: Mapping[str, str],
        overrides: Optional[Mapping[str, str]] = None,
    ) -> None:
        """
        Args:
            env (Mapping[str, str]): The process environment, injected explicitly.
            overrides (Mapping[str, str], optional): Per-run values that take
                precedence over the environment, keyed by env var name.
        """
        self._env: Mapping[str, str] = env
        self._overrides: Mapping[str, str] = overrides or {}

    def _lookup(self, name: str) -> Optional[str]:
        for source in (self._overrides, self._env):
            value: Optional[str] = source.get(name)
            if value:
                return value
        return None

    def resolve(self, backend: Backend) -> Credentials:
        """
        Resolves and validates the credentials for a backend.

        Args:
            backend (Backend): The backend to resolve credentials for.

        Returns:
            Credentials: The resolved, read-only credentials.

        Raises:
            MissingCredential: If a required field is absent or empty.
        """
        values: Dict[str, str] = {}
        for cred_field in CREDENTIAL_FIELDS[backend]:
            value: Optional[str] = self._lookup(cred_field.env_var)
            if value is None:
                if cred_field.required:
                    raise MissingCredential(cred_field.env_var)
                continue
            values[cred_field.env_var] = value

        credentials: Credentials = Credentials(
            backend=backend, fields=MappingProxyType(values)
        )
        if credentials.is_temporary:
            logger.debug(f"Using temporary credentials for '{backend.value}'.")
        return credentials


def resolve(
    backend: Backend,
    env: Mapping[str, str],
    overrides: Optional[Mapping[str, str]] = None,
) -> Credentials:
    """
    Convenience wrapper around `CredentialResolver.resolve`.

    Args:
        backend (Backend): The backend to resolve credentials for.
        env (Mapping[str, str]): The environment mapping.
        overrides (Mapping[str, str], optional): Per-run overrides.

    Returns:
        Credentials: The resolved credentials.
    """
    return CredentialResolver(env, overrides).resolve(backend)
