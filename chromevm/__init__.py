"""
Chrome VM Orchestrator.

This service manages the lifecycle of browser VMs across several backends:
- Local Docker containers running Chrome behind a noVNC display
- Edge worker, cloud compute and platform proxy provisioning APIs
- Readiness polling of asynchronously provisioned VMs
- Automatic degradation to synthetic (mock) VMs when a backend fails
- In-memory registry of VM descriptors with per-VM locking
"""

__version__ = "1.0.0"
