"""Latest-version resolution through ACI meta discovery.

This module handles:
- Fetching ``?ac-discovery=1`` pages and parsing ``ac-discovery`` meta tags
- Rendering ACI URL templates for the ``latest`` version
- Reading the version out of the redirect served for ``latest``
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

import httpx

from aci_imagegen.builds.versions import VersionResolutionError
from aci_imagegen.manifest.schema import ACFullname

logger = logging.getLogger(__name__)

DISCOVERY_TIMEOUT = 10

META_PATTERN = re.compile(
    r"<meta\s+name=[\"']ac-discovery[\"']\s+content=[\"']([^\"']+)[\"']",
    re.IGNORECASE,
)

DEFAULT_LABELS = {"os": "linux", "arch": "amd64", "ext": "aci"}


@dataclass
class DiscoveryTemplate:
    """An ``ac-discovery`` meta entry."""

    prefix: str
    template: str

    def render(self, name: str, version: str) -> str:
        """Render the URL template for a name and version."""
        url = self.template.replace("{name}", name).replace("{version}", version)
        for key, value in DEFAULT_LABELS.items():
            url = url.replace("{" + key + "}", value)
        return url


def parse_discovery_templates(html: str) -> list[DiscoveryTemplate]:
    """Extract ``ac-discovery`` meta entries from an HTML page.

    Args:
        html: Page content.

    Returns:
        Templates in page order.
    """
    templates: list[DiscoveryTemplate] = []
    for content in META_PATTERN.findall(html):
        parts = content.split()
        if len(parts) != 2:
            logger.debug("Ignoring malformed ac-discovery entry: %s", content)
            continue
        templates.append(DiscoveryTemplate(prefix=parts[0], template=parts[1]))
    return templates


def discovery_urls(name: str, insecure: bool = False) -> list[str]:
    """Discovery URLs for a name, most specific first."""
    scheme = "http" if insecure else "https"
    segments = name.split("/")
    return [
        f"{scheme}://{'/'.join(segments[:i])}?ac-discovery=1"
        for i in range(len(segments), 0, -1)
    ]


def version_from_location(location: str, ref: ACFullname) -> str | None:
    """Extract the version from an ACI file name like ``foo-1.2-linux-amd64.aci``."""
    filename = location.rstrip("/").rsplit("/", 1)[-1]
    pattern = re.compile(
        rf"^{re.escape(ref.short_name)}-(.+)-{DEFAULT_LABELS['os']}-"
        rf"{DEFAULT_LABELS['arch']}\.{DEFAULT_LABELS['ext']}$"
    )
    match = pattern.match(filename)
    return match.group(1) if match else None


class DiscoveryVersionResolver:
    """``VersionResolver`` backed by ACI meta discovery over HTTP.

    Args:
        timeout: Request timeout in seconds.
        insecure: Use plain HTTP for discovery.
        client: Optional shared httpx client.
    """

    def __init__(
        self,
        timeout: int = DISCOVERY_TIMEOUT,
        insecure: bool = False,
        client: httpx.Client | None = None,
    ) -> None:
        self.timeout = timeout
        self.insecure = insecure
        self.client = client

    def _discover(self, client: httpx.Client, name: str) -> DiscoveryTemplate | None:
        for url in discovery_urls(name, self.insecure):
            response = client.get(url, follow_redirects=True)
            if response.status_code != 200:
                continue
            for template in parse_discovery_templates(response.text):
                if name.startswith(template.prefix):
                    return template
        return None

    def _resolve(self, client: httpx.Client, ref: ACFullname) -> str | None:
        template = self._discover(client, ref.name)
        if template is None:
            logger.debug("No ac-discovery endpoint for %s", ref.name)
            return None

        latest_url = template.render(ref.name, "latest")
        response = client.head(latest_url, follow_redirects=False)
        location = response.headers.get("location")
        if not response.is_redirect or not location:
            logger.debug("No redirect for latest of %s (%s)", ref.name, latest_url)
            return None
        return version_from_location(location, ref)

    def latest_version(self, ref: ACFullname) -> str | None:
        """Return the latest published version of ``ref``.

        Raises:
            VersionResolutionError: On network or HTTP errors.
        """
        try:
            if self.client is not None:
                return self._resolve(self.client, ref)
            with httpx.Client(timeout=self.timeout) as client:
                return self._resolve(client, ref)
        except httpx.HTTPError as e:
            raise VersionResolutionError(
                f"Discovery failed for {ref.name}: {e}"
            ) from e


__all__ = [
    "DISCOVERY_TIMEOUT",
    "DiscoveryTemplate",
    "DiscoveryVersionResolver",
    "discovery_urls",
    "parse_discovery_templates",
    "version_from_location",
]
