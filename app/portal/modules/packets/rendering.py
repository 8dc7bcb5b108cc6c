from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Any

from app.portal.storage import Storage, storage_from_config

logger = logging.getLogger(__name__)


class ArtifactRenderer:
    """Rendering boundary: turns packet content into a stored artifact and returns its reference."""

    def render_packet_to_artifact(self, packet_id: int, content: dict[str, Any]) -> str:
        raise NotImplementedError


def content_digest(content: dict[str, Any]) -> tuple[bytes, str]:
    body = json.dumps(content, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return body, hashlib.sha256(body).hexdigest()


@dataclass(frozen=True)
class StorageArtifactRenderer(ArtifactRenderer):
    """
    Writes a canonical document for the packet content to storage.

    The key is derived from the content hash, so rendering the same content
    twice yields the same reference and skips the second upload.
    """

    storage: Storage

    def render_packet_to_artifact(self, packet_id: int, content: dict[str, Any]) -> str:
        body, sha256 = content_digest(content)
        key = f"packets/{packet_id}/packet-{sha256[:16]}.json"
        if self.storage.exists(key):
            logger.debug("Artifact already present for packet_id=%s key=%s", packet_id, key)
            return key
        self.storage.put_bytes(key, body, content_type="application/json")
        logger.info("Rendered artifact packet_id=%s key=%s size=%s", packet_id, key, len(body))
        return key


def renderer_from_config(config: dict) -> ArtifactRenderer:
    return StorageArtifactRenderer(storage=storage_from_config(config))
