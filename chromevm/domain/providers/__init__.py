"""
VM provider module.

Supports a local Docker backend and three HTTP provisioning APIs
(edge worker, cloud compute, platform proxy).
"""

from chromevm.domain.providers.base import BaseProvider, VMProvider
from chromevm.domain.providers.factory import build_providers

__all__ = ["BaseProvider", "VMProvider", "build_providers"]
