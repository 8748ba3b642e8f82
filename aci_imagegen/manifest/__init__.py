"""Build manifest module.

This module handles:
- Manifest schema (pydantic models)
- Rendering manifest templates into validated manifests
- Generating and reading ACI image manifests
"""

from aci_imagegen.manifest.schema import ACFullname, AciManifest
from aci_imagegen.manifest.template import render

__all__ = ["ACFullname", "AciManifest", "render"]
