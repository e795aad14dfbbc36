"""
Platform proxy implementation of the VM provider.

The platform hosts the browser itself and answers the create call with a
VM that is usable right away, so no readiness poll is scheduled.
"""

from __future__ import annotations

from chromevm.domain.providers.remote import RemoteProvider
from chromevm.domain.types import ProviderKind


class PlatformProxyProvider(RemoteProvider):
    """Railway-style hosted platform provider."""

    name = "platform_proxy"
    kind = ProviderKind.PLATFORM_PROXY
    polls_readiness = False
    available_on_probe_error = True
