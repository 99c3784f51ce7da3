# src/tidecopy/locator.py
"""
Parsing of source and destination locators.

A locator is a URI-like string naming either a single object or a prefix
(a directory-like scope). ``s3://bucket/dir/`` is a prefix in the ``bucket``
bucket, ``s3://bucket/dir/file.csv`` is a single object, and a string with no
scheme is a path on the local filesystem.
"""

import os
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, List, Tuple

from tidecopy.exceptions import InvalidLocator

SEPARATOR: str = "/"


class Backend(Enum):
    """Storage backends a locator can address."""

    LOCAL = "local"
    S3 = "s3"


# Schemes that name a backend explicitly. A missing scheme means LOCAL.
_SCHEMES: Dict[str, Backend] = {
    "s3": Backend.S3,
    "file": Backend.LOCAL,
}

# Backends that address objects as bucket + key rather than a bare path.
_BUCKET_BACKENDS: Tuple[Backend, ...] = (Backend.S3,)


@dataclass(frozen=True)
class Locator:
    """
    A parsed, immutable locator.

    Attributes:
        backend (Backend): The storage backend the locator addresses.
        bucket (str): The bucket name, or "" for backends without buckets.
        path (str): The key or filesystem path, including any trailing "/".
        is_prefix (bool): True when the locator names a directory-like scope.
    """

    backend: Backend
    bucket: str
    path: str
    is_prefix: bool

    def __str__(self) -> str:
        if self.backend in _BUCKET_BACKENDS:
            return f"{self.backend.value}://{self.bucket}/{self.path}"
        return self.path

    def relative_key(self, key: str) -> str:
        """
        Strips this prefix from a listed key.

        Args:
            key (str): A key returned by listing this locator.

        Returns:
            str: The part of the key below the prefix.
        """
        if not key.startswith(self.path):
            raise ValueError(f"Key '{key}' is not under prefix '{self.path}'")
        return key[len(self.path) :]

    def child(self, relative_key: str) -> "Locator":
        """
        Derives the single-object locator for a key below this prefix.

        Args:
            relative_key (str): The key relative to this prefix.

        Returns:
            Locator: A non-prefix locator in the same bucket.

        Raises:
            InvalidLocator: If `relative_key` is absolute or has a ".."
                segment, either of which would escape this prefix.
        """
        if not self.is_prefix:
            raise ValueError(f"Locator '{self}' is not a prefix")
        segments: List[str] = relative_key.split(SEPARATOR)
        if relative_key.startswith(SEPARATOR) or ".." in segments:
            raise InvalidLocator(f"{self}{relative_key}", "key escapes its prefix")
        return replace(self, path=self.path + relative_key, is_prefix=False)

    @property
    def basename(self) -> str:
        """The final path segment of a single-object locator."""
        return self.path.rstrip(SEPARATOR).rsplit(SEPARATOR, 1)[-1]


def _split_scheme(raw: str) -> Tuple[str, str]:
    scheme, sep, rest = raw.partition("://")
    if not sep:
        return "", raw
    return scheme.lower(), rest


def parse_locator(raw: str) -> Locator:
    """
    Parses a raw locator string.

    Args:
        raw (str): A string such as ``s3://bucket/dir/`` or ``./data/file.csv``.

    Returns:
        Locator: The structured locator.

    Raises:
        InvalidLocator: If the scheme is unknown, or a bucket-style backend
            is missing its bucket.
    """
    if not raw:
        raise InvalidLocator(raw, "locator must not be empty")

    scheme, rest = _split_scheme(raw)
    if scheme and scheme not in _SCHEMES:
        raise InvalidLocator(raw, f"unrecognized scheme '{scheme}'")
    backend: Backend = _SCHEMES.get(scheme, Backend.LOCAL)

    if backend not in _BUCKET_BACKENDS:
        path: str = rest.replace(os.sep, SEPARATOR) if os.sep != SEPARATOR else rest
        if not path:
            raise InvalidLocator(raw, "local path must not be empty")
        return Locator(
            backend=backend,
            bucket="",
            path=path,
            is_prefix=path.endswith(SEPARATOR),
        )

    bucket, _, key = rest.partition(SEPARATOR)
    if not bucket:
        raise InvalidLocator(raw, f"{backend.value} locators require a bucket")
    if not key and not raw.endswith(SEPARATOR):
        raise InvalidLocator(raw, "a whole-bucket locator must end with '/'")
    return Locator(
        backend=backend,
        bucket=bucket,
        path=key,
        is_prefix=raw.endswith(SEPARATOR),
    )
