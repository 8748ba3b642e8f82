"""Isolation runtime access.

``RuntimeBridge`` is the protocol consumed by the build pipeline;
``RktRuntime`` implements it on top of the rkt CLI.
"""

from aci_imagegen.runtime.bridge import RuntimeBridge
from aci_imagegen.runtime.rkt import RktRuntime

__all__ = ["RktRuntime", "RuntimeBridge"]
