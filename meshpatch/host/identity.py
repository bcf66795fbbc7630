"""Identity store capability: opaque identity tokens and descriptor metadata.

An asset's identity token is a 32-character lowercase hex string stored in a
``guid:`` line of its descriptor text. The engine never interprets tokens; it
only copies them between descriptors.
"""

from __future__ import annotations

import logging
import re
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

from meshpatch.utils import write_text_atomic

logger = logging.getLogger(__name__)

PLACEHOLDER_TOKEN = "PLACEHOLDER_GUID"
DESCRIPTOR_SUFFIX = ".meta"

_TOKEN_PATTERN = re.compile(r"^[a-f0-9]{32}$")
_GUID_LINE = re.compile(r"guid:\s*(?:[a-f0-9]{32}|PLACEHOLDER_GUID)")


def new_identity_token() -> str:
    return uuid.uuid4().hex


def validate_identity_token(token: str) -> str:
    if not isinstance(token, str) or not _TOKEN_PATTERN.match(token):
        raise ValueError(f"Identity token must be 32 lowercase hex characters (got {token!r})")
    return token


def extract_identity(text: str) -> Optional[str]:
    match = re.search(r"guid:\s*([a-f0-9]{32})", text)
    return match.group(1) if match else None


def substitute_identity(text: str, token: str) -> str:
    """Replace the ``guid:`` line of ``text`` with ``token``."""
    replaced, count = _GUID_LINE.subn(f"guid: {token}", text, count=1)
    if count == 0:
        separator = "" if not replaced or replaced.endswith("\n") else "\n"
        replaced = f"{replaced}{separator}guid: {token}\n"
    return replaced


def _default_descriptor(token: str) -> str:
    return f"fileFormatVersion: 2\nguid: {token}\n"


class IdentityStore(ABC):
    """Host capability holding identity tokens and descriptor text per asset."""

    @abstractmethod
    def read_identity(self, asset_ref: str) -> Optional[str]:
        """Return the asset's identity token, or ``None`` when it has none."""

    @abstractmethod
    def write_identity(self, asset_ref: str, token: str) -> None:
        """Record ``token`` as the asset's identity."""

    @abstractmethod
    def read_descriptor(self, asset_ref: str) -> Optional[str]:
        """Return the raw descriptor text, or ``None`` when absent."""

    @abstractmethod
    def write_descriptor(self, asset_ref: str, text: str, token: str) -> None:
        """Store ``text`` as the asset's descriptor with ``token`` substituted."""

    def read_descriptor_for_embedding(self, asset_ref: str) -> Optional[str]:
        """Descriptor text with the identity token replaced by a placeholder."""
        text = self.read_descriptor(asset_ref)
        if text is None:
            return None
        return substitute_identity(text, PLACEHOLDER_TOKEN)


class InMemoryIdentityStore(IdentityStore):
    def __init__(self) -> None:
        self.identities: Dict[str, str] = {}
        self.descriptors: Dict[str, str] = {}

    def read_identity(self, asset_ref: str) -> Optional[str]:
        token = self.identities.get(asset_ref)
        if token is None and asset_ref in self.descriptors:
            token = extract_identity(self.descriptors[asset_ref])
        return token

    def write_identity(self, asset_ref: str, token: str) -> None:
        validate_identity_token(token)
        self.identities[asset_ref] = token
        if asset_ref in self.descriptors:
            self.descriptors[asset_ref] = substitute_identity(self.descriptors[asset_ref], token)

    def read_descriptor(self, asset_ref: str) -> Optional[str]:
        return self.descriptors.get(asset_ref)

    def write_descriptor(self, asset_ref: str, text: str, token: str) -> None:
        validate_identity_token(token)
        self.descriptors[asset_ref] = substitute_identity(text, token)
        self.identities[asset_ref] = token


class SidecarIdentityStore(IdentityStore):
    """Keeps descriptors in ``<asset>.meta`` text files beside each asset."""

    def __init__(self, suffix: str = DESCRIPTOR_SUFFIX) -> None:
        self.suffix = suffix

    def descriptor_path(self, asset_ref: str) -> Path:
        path = Path(asset_ref)
        return path.with_name(path.name + self.suffix)

    def read_identity(self, asset_ref: str) -> Optional[str]:
        text = self.read_descriptor(asset_ref)
        return extract_identity(text) if text is not None else None

    def write_identity(self, asset_ref: str, token: str) -> None:
        validate_identity_token(token)
        existing = self.read_descriptor(asset_ref)
        text = substitute_identity(existing, token) if existing is not None else _default_descriptor(token)
        write_text_atomic(self.descriptor_path(asset_ref), text)

    def read_descriptor(self, asset_ref: str) -> Optional[str]:
        path = self.descriptor_path(asset_ref)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def write_descriptor(self, asset_ref: str, text: str, token: str) -> None:
        validate_identity_token(token)
        write_text_atomic(self.descriptor_path(asset_ref), substitute_identity(text, token))
        logger.debug("Wrote descriptor for %s", asset_ref)
