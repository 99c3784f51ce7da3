# src/tidecopy/config.py
"""
Configuration for a tidecopy run.

This module centralizes the tunable parameters of a run in a typed, frozen
dataclass. Defaults can be overridden from an injected environment mapping
(``TIDECOPY_*`` variables) and then from command-line options. Credentials
are not configuration; see `tidecopy.credentials`.
"""

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from tidecopy.exceptions import ConfigError

ENV_PREFIX: str = "TIDECOPY_"


def _get_env_int(env: Mapping[str, str], name: str, default: int) -> int:
    """
    Retrieves an optional positive integer environment variable.

    Args:
        env (Mapping[str, str]): The environment mapping.
        name (str): The name of the variable, without the prefix.
        default (int): The value used when the variable is unset.

    Returns:
        int: The parsed value.
    """
    raw: Optional[str] = env.get(ENV_PREFIX + name)
    if not raw:
        return default
    try:
        value: int = int(raw)
    except ValueError as e:
        raise ConfigError(
            f"Environment variable '{ENV_PREFIX}{name}' must be an integer, "
            f"got '{raw}'."
        ) from e
    if value < 1:
        raise ConfigError(f"Environment variable '{ENV_PREFIX}{name}' must be >= 1.")
    return value


@dataclass(frozen=True)
class RunConfig:
    """
    Defines the operational parameters of a run.

    Attributes:
        concurrency (int): Number of tasks executed concurrently.
        max_attempts (int): Max attempts for one object, including the first.
        backoff_base_s (float): Delay before the first retry.
        backoff_max_s (float): Upper bound on any retry delay.
        page_size (int): Objects requested per listing page.
        stream_threshold_bytes (int): Objects larger than this are streamed
            chunk by chunk instead of being buffered whole.
        chunk_size_bytes (int): Read size when streaming.
        part_size_bytes (int): Multipart upload part size for S3 writes.
        journal_dir (Path, optional): Directory of the LMDB transfer journal.
        journal_map_size_mb (int): Maximum journal size in megabytes.
        report_path (Path, optional): Where to export the transfer report.
    """

    concurrency: int = 16
    max_attempts: int = 5
    backoff_base_s: float = 0.5
    backoff_max_s: float = 30.0
    page_size: int = 1000
    stream_threshold_bytes: int = 8 * 1024 * 1024
    chunk_size_bytes: int = 1024 * 1024
    part_size_bytes: int = 8 * 1024 * 1024
    journal_dir: Optional[Path] = None
    journal_map_size_mb: int = 256
    report_path: Optional[Path] = None

    def __post_init__(self) -> None:
        if self.concurrency < 1:
            raise ConfigError("concurrency must be at least 1.")
        if self.max_attempts < 1:
            raise ConfigError("max_attempts must be at least 1.")
        if self.page_size < 1:
            raise ConfigError("page_size must be at least 1.")

    @classmethod
    def from_env(cls, env: Mapping[str, str], **overrides: Any) -> "RunConfig":
        """
        Builds a config from ``TIDECOPY_*`` variables, then explicit overrides.

        Args:
            env (Mapping[str, str]): The environment mapping.
            **overrides: Field values that win over the environment. None
                values are ignored.

        Returns:
            RunConfig: The resulting configuration.
        """
        defaults: RunConfig = cls()
        values: Dict[str, Any] = {
            "concurrency": _get_env_int(env, "CONCURRENCY", defaults.concurrency),
            "max_attempts": _get_env_int(env, "MAX_ATTEMPTS", defaults.max_attempts),
            "page_size": _get_env_int(env, "PAGE_SIZE", defaults.page_size),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return replace(defaults, **values)
