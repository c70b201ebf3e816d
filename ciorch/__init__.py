"""
ciorch - self-hosted continuous-integration step orchestrator

Runs a fixed pipeline of build/verify/package steps for one repository,
judging each step by its exit code or by the status file the step's tool
writes, and keeps the run history in a JSON state file.
"""

__version__ = "0.1.0"


__all__ = ["OrchestratorConfig", "load_config", "PLAN", "Status", "Step"]

from .config import OrchestratorConfig, load_config
from .steps import PLAN, Status, Step
