"""Build orchestration module.

This module handles:
- Per-build context and artifact layout
- Dependency compatibility and latest-version checks
- Stage1 and builder image staging
- Running the builder through the isolation runtime
- Archive packaging, compression and ensure-style staging
"""

from aci_imagegen.builds.context import BuildContext, BuildOptions
from aci_imagegen.builds.orchestrator import BuildOrchestrator

__all__ = ["BuildContext", "BuildOptions", "BuildOrchestrator"]

# Access helpers via aci_imagegen.builds.archive, etc.
