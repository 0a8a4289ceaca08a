"""Settings read from the environment (and a ``.env`` file, if present)."""

import base64
import binascii
import os
from typing import Dict, Optional

from dotenv import load_dotenv

from .planner import DEFAULT_MAX_PARTS

_DEFAULTS = {
    "NUM_OF_PARTS": 5,
    "MAX_PARTS": DEFAULT_MAX_PARTS,
    "MAX_CONCURRENCY": 0,
    "BLOCK_SIZE_MB": 4,
    "SAS_EXPIRY_MINUTES": 60,
}

# Azure caps the number of blocks in one committed blob at 50,000
_AZURE_MAX_BLOCKS = 50_000

_PORTAL_HINT = "Copy a fresh connection string from Azure Portal → Storage account → Access keys."


def _env_int(name: str) -> int:
    raw = os.getenv(name, str(_DEFAULTS[name]))
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got '{raw}').")


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    def __init__(self) -> None:
        load_dotenv()

        self.conn_str: str = os.environ["AZURE_CONN_STR"]
        self.container_name: str = os.getenv("CONTAINER_NAME", "")
        self.num_of_parts: int = _env_int("NUM_OF_PARTS")
        self.max_parts: int = _env_int("MAX_PARTS")
        self.max_concurrency: int = _env_int("MAX_CONCURRENCY")
        self.block_size: int = _env_int("BLOCK_SIZE_MB") * 1024 * 1024
        self.sas_expiry_minutes: int = _env_int("SAS_EXPIRY_MINUTES")
        self.cleanup_on_failure: bool = _env_bool("CLEANUP_ON_FAILURE")
        self.log_path: Optional[str] = os.getenv("LOG_PATH")

        parts = self._validate_connection_string()
        self.account_name: str = parts["AccountName"]
        self.account_key: str = parts["AccountKey"]

        if not 1 <= self.max_parts <= _AZURE_MAX_BLOCKS:
            raise ValueError(
                f"MAX_PARTS must be between 1 and {_AZURE_MAX_BLOCKS:,} (got {self.max_parts})."
            )
        if not 1 <= self.num_of_parts <= self.max_parts:
            raise ValueError(
                f"NUM_OF_PARTS must be between 1 and MAX_PARTS={self.max_parts} "
                f"(got {self.num_of_parts})."
            )
        if self.max_concurrency < 0:
            raise ValueError("MAX_CONCURRENCY must be 0 (one thread per part) or more.")
        # Azure max staged block size is 4000 MiB
        if not 1 <= self.block_size // (1024 * 1024) <= 4000:
            raise ValueError("BLOCK_SIZE_MB must be between 1 and 4000.")
        if self.sas_expiry_minutes < 1:
            raise ValueError("SAS_EXPIRY_MINUTES must be at least 1.")

    def _validate_connection_string(self) -> Dict[str, str]:
        """Parse the connection string and check each component before connecting."""
        cs = self.conn_str.strip()

        parts: Dict[str, str] = {}
        for segment in cs.split(";"):
            segment = segment.strip()
            if not segment:
                continue
            if "=" not in segment:
                raise ValueError(
                    f"Malformed AZURE_CONN_STR: segment '{segment}' has no '=' separator.\n"
                    + _PORTAL_HINT
                )
            # Split on the first '=' only; the account key ends with '=' padding
            key, _, value = segment.partition("=")
            parts[key.strip()] = value.strip()

        for required in ("AccountName", "AccountKey", "DefaultEndpointsProtocol"):
            if not parts.get(required):
                raise ValueError(
                    f"AZURE_CONN_STR is missing the '{required}' field.\n" + _PORTAL_HINT
                )

        if parts["AccountName"] in ("your_account", "your_account_name"):
            raise ValueError(
                "AZURE_CONN_STR has a placeholder AccountName. "
                "Replace it with your real Azure Storage account name."
            )

        raw_key = parts["AccountKey"]
        if raw_key in ("your_account_key", "your_key"):
            raise ValueError("AZURE_CONN_STR has a placeholder AccountKey. " + _PORTAL_HINT)

        try:
            decoded = base64.b64decode(raw_key, validate=True)
        except (binascii.Error, ValueError):
            raise ValueError(
                "AZURE_CONN_STR AccountKey is not valid base64 — it is corrupted or truncated.\n"
                + _PORTAL_HINT
            )

        # Storage account keys are 64 random bytes
        if len(decoded) != 64:
            raise ValueError(
                f"AZURE_CONN_STR AccountKey decoded to {len(decoded)} bytes (expected 64). "
                "The key appears truncated.\n" + _PORTAL_HINT
            )

        if parts["DefaultEndpointsProtocol"].lower() != "https":
            raise ValueError(
                "AZURE_CONN_STR uses a non-HTTPS protocol. Set DefaultEndpointsProtocol=https."
            )
        return parts
