"""Upload of built images to an HTTP image store.

Each file is sent with an authenticated ``PUT`` to
``<url>/<name>-<version>-linux-amd64.aci`` (and ``.aci.asc``), the naming
scheme ACI discovery templates resolve to.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

import httpx

from aci_imagegen.errors import PushError
from aci_imagegen.types import ArtifactSet

logger = logging.getLogger(__name__)

PUSH_TIMEOUT = 600


class Pusher(Protocol):
    """Publishes a compressed, signed image."""

    def push(self, artifacts: ArtifactSet) -> list[str]:
        """Upload the artifacts and return the uploaded URLs."""
        ...


def remote_file_name(name_and_version: str) -> str:
    """ACI file name for ``name[:version]``."""
    name, _, version = name_and_version.partition(":")
    short_name = name.rsplit("/", 1)[-1]
    return f"{short_name}-{version or 'latest'}-linux-amd64.aci"


class HttpPusher:
    """``Pusher`` uploading with httpx.

    Args:
        url: Base URL of the image store.
        username: Optional basic-auth user.
        password: Optional basic-auth password.
        client: Optional shared httpx client.
    """

    def __init__(
        self,
        url: str,
        username: str | None = None,
        password: str | None = None,
        client: httpx.Client | None = None,
        timeout: int = PUSH_TIMEOUT,
    ) -> None:
        self.url = url.rstrip("/")
        self.auth = httpx.BasicAuth(username, password or "") if username else None
        self.client = client
        self.timeout = timeout

    def _upload(self, client: httpx.Client, source: Path, url: str) -> None:
        logger.info("Uploading %s to %s", source, url)
        with source.open("rb") as f:
            response = client.put(url, content=f, auth=self.auth)
        response.raise_for_status()

    def push(self, artifacts: ArtifactSet) -> list[str]:
        if not artifacts.compressed_image or not artifacts.name_and_version:
            raise PushError(
                "Nothing to push: compressed image or version is missing",
                fields={"target": artifacts.target_path},
            )

        base = f"{self.url}/{remote_file_name(artifacts.name_and_version)}"
        uploads = [(Path(artifacts.compressed_image), base)]
        if artifacts.compressed_image_signature:
            uploads.append((Path(artifacts.compressed_image_signature), base + ".asc"))

        try:
            if self.client is not None:
                for source, url in uploads:
                    self._upload(self.client, source, url)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    for source, url in uploads:
                        self._upload(client, source, url)
        except (httpx.HTTPError, OSError) as e:
            raise PushError(
                f"Push failed: {e}",
                fields={"aci": artifacts.name_and_version, "url": self.url},
            ) from e
        return [url for _, url in uploads]


__all__ = ["HttpPusher", "Pusher", "remote_file_name"]
