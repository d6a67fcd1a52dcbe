"""Assemble the deployment services from one configuration."""

from __future__ import annotations

from datetime import timedelta
from typing import Optional

from .config import MailpilotConfig, load_config
from .deploy import DeploymentOrchestrator
from .engine import WorkflowEngine, get_engine
from .locks import UserLocks
from .monitor import RecoveryMonitor
from .notifications import Notifier, get_notifier
from .onboarding import OnboardingCompletionAggregator
from .persistence import DeploymentRepository, get_repository
from .verify import VerificationRunner


class Services:
    """Orchestrator, monitor and aggregator sharing collaborators and locks.

    Deploys and sweeps for one user are serialized only when both go
    through the same :class:`UserLocks`, so build them together here.
    """

    def __init__(
        self,
        config: MailpilotConfig,
        engine: WorkflowEngine,
        repository: DeploymentRepository,
        notifier: Notifier,
    ) -> None:
        self.config = config
        self.engine = engine
        self.repository = repository
        self.notifier = notifier
        self.locks = UserLocks()

        deploy_conf = config.deploy
        monitor_conf = config.monitor
        notify_conf = config.notifications
        self.orchestrator = DeploymentOrchestrator(
            engine,
            repository,
            notifier,
            locks=self.locks,
            verifier=VerificationRunner(
                engine,
                poll_attempts=deploy_conf.verification_poll_attempts,
                poll_interval=deploy_conf.verification_poll_interval,
            ),
            backoff_schedule=deploy_conf.backoff_schedule,
            max_attempts=deploy_conf.max_attempts,
            operator_email=notify_conf.operator_email,
            webhook_base_url=config.engine.webhook_base_url,
        )
        self.monitor = RecoveryMonitor(
            engine,
            repository,
            notifier,
            locks=self.locks,
            lookback=timedelta(hours=monitor_conf.lookback_hours),
            interval=monitor_conf.interval,
            concurrency=monitor_conf.concurrency,
            frontend_url=notify_conf.frontend_url,
        )
        self.onboarding = OnboardingCompletionAggregator(
            engine,
            repository,
            notifier,
            first_execution_window=timedelta(
                minutes=monitor_conf.first_execution_window_minutes
            ),
            frontend_url=notify_conf.frontend_url,
        )

    async def close(self) -> None:
        await self.engine.close()
        close_notifier = getattr(self.notifier, "close", None)
        if close_notifier is not None:
            await close_notifier()


def build_services(
    config: Optional[MailpilotConfig] = None,
    engine: Optional[WorkflowEngine] = None,
    repository: Optional[DeploymentRepository] = None,
    notifier: Optional[Notifier] = None,
) -> Services:
    """Create :class:`Services`, filling missing collaborators from ``config``."""
    config = config or load_config()
    return Services(
        config,
        engine or get_engine(config=config),
        repository or get_repository(config=config),
        notifier or get_notifier(config),
    )
