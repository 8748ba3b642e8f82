"""Tests for meta discovery version resolution.

HTTP is mocked with respx.
"""

import httpx
import pytest
import respx

from aci_imagegen.builds.discovery import (
    DiscoveryTemplate,
    DiscoveryVersionResolver,
    discovery_urls,
    parse_discovery_templates,
    version_from_location,
)
from aci_imagegen.builds.versions import VersionResolutionError
from aci_imagegen.manifest.schema import ACFullname

DISCOVERY_PAGE = """<html><head>
<meta name="ac-discovery" content="aci.example.com https://aci.example.com/{name}/{name}-{version}-{os}-{arch}.{ext}">
<meta name="ac-discovery-pubkeys" content="aci.example.com https://aci.example.com/pubkeys.gpg">
</head></html>"""


class TestParsing:
    """Tests for discovery page helpers."""

    def test_parse_templates(self) -> None:
        templates = parse_discovery_templates(DISCOVERY_PAGE)
        assert len(templates) == 1
        assert templates[0].prefix == "aci.example.com"

    def test_render(self) -> None:
        template = DiscoveryTemplate("a.com", "https://a.com/{name}-{version}-{os}-{arch}.{ext}")
        assert template.render("a.com/x", "latest") == (
            "https://a.com/a.com/x-latest-linux-amd64.aci"
        )

    def test_discovery_urls(self) -> None:
        """Most specific URL first."""
        assert discovery_urls("a.com/b/c") == [
            "https://a.com/b/c?ac-discovery=1",
            "https://a.com/b?ac-discovery=1",
            "https://a.com?ac-discovery=1",
        ]

    def test_version_from_location(self) -> None:
        ref = ACFullname("aci.example.com/tools:1")
        assert version_from_location("/tools/tools-1.4-2-linux-amd64.aci", ref) == "1.4-2"
        assert version_from_location("/tools/other-1-linux-amd64.aci", ref) is None


class TestDiscoveryVersionResolver:
    """Tests for DiscoveryVersionResolver."""

    @respx.mock
    def test_latest_version(self) -> None:
        """Latest version is read from the redirect location."""
        respx.get("https://aci.example.com/tools?ac-discovery=1").mock(
            return_value=httpx.Response(200, text=DISCOVERY_PAGE)
        )
        respx.head(
            "https://aci.example.com/aci.example.com/tools/"
            "aci.example.com/tools-latest-linux-amd64.aci"
        ).mock(
            return_value=httpx.Response(
                302, headers={"Location": "https://cdn.example.com/tools-1.5-linux-amd64.aci"}
            )
        )
        resolver = DiscoveryVersionResolver()
        assert resolver.latest_version(ACFullname("aci.example.com/tools:1.2")) == "1.5"

    @respx.mock
    def test_no_discovery(self) -> None:
        """Unknown hosts resolve to None."""
        respx.get(url__regex=r"https://unknown\.example\.com.*").mock(
            return_value=httpx.Response(404)
        )
        resolver = DiscoveryVersionResolver()
        assert resolver.latest_version(ACFullname("unknown.example.com/a:1")) is None

    @respx.mock
    def test_network_error(self) -> None:
        respx.get(url__regex=r".*").mock(side_effect=httpx.ConnectError("down"))
        resolver = DiscoveryVersionResolver()
        with pytest.raises(VersionResolutionError):
            resolver.latest_version(ACFullname("aci.example.com/a:1"))
