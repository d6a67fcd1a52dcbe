"""Mailpilot: deployment and supervision of per-user email automations."""

from .contracts import AutomationConfig, DeploymentStatus, DeployResult
from .deploy import DeploymentOrchestrator
from .engine import get_engine
from .monitor import RecoveryMonitor
from .notifications import get_notifier
from .onboarding import OnboardingCompletionAggregator
from .persistence import get_repository
from .services import build_services
from .verify import VerificationRunner

__version__ = "0.1.0"
__all__ = [
    "AutomationConfig",
    "DeploymentStatus",
    "DeployResult",
    "DeploymentOrchestrator",
    "VerificationRunner",
    "RecoveryMonitor",
    "OnboardingCompletionAggregator",
    "get_engine",
    "get_repository",
    "get_notifier",
    "build_services",
]
