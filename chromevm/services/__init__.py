"""Services module for VM orchestration."""

from chromevm.services.orchestrator import Orchestrator

__all__ = ["Orchestrator"]
