"""ACI Image Generator - build ACI container images inside an isolated builder.

This package orchestrates the multi-stage (stage1 + builder + result) build of
application container images through the rkt runtime, and stages the
resulting archives (compressed, signed) on disk.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
