"""
Orchestrator wiring.

build_orchestrator() constructs the stores once and hands them to the
queue, step machine, publisher, ledger and selector by constructor
injection. The worker command builds one at start; views build one per
request (every component is stateless apart from its stores).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from django.conf import settings

from alfie.integrations.backends import BackendClient, get_backend_client
from alfie.providers.selection import ProviderSelector
from alfie.providers.stores import DjangoProviderMetricsStore, DjangoProviderStore
from alfie.quotas.ledger import QuotaLedger
from alfie.quotas.stores import DjangoQuotaStore

from .events import EventPublisher
from .handlers import HandlerContext
from .monitor import QueueMonitor
from .queue import JobQueue, QueueConfig
from .runner import JobRunner
from .steps import StepMachine
from .stores import DjangoEventStore, DjangoJobStore, DjangoOrderStore, DjangoStepStore


@dataclass
class Orchestrator:
    queue: JobQueue
    steps: StepMachine
    publisher: EventPublisher
    ledger: QuotaLedger
    selector: ProviderSelector
    monitor: QueueMonitor
    runner: JobRunner | None = None


def build_orchestrator(
    *,
    backend_client: BackendClient | None = None,
    job_handlers: dict[str, Callable] | None = None,
    step_handlers: dict[str, Callable] | None = None,
    with_runner: bool = False,
) -> Orchestrator:
    """
    Wire the job subsystem over the Django stores.

    The runner (and with it the generation backend client) is only built
    when asked for, so API requests never need backend settings.
    """
    job_store = DjangoJobStore()
    step_store = DjangoStepStore()

    publisher = EventPublisher(DjangoEventStore(), job_store, step_store)
    steps = StepMachine(step_store, publisher, max_attempts=settings.ALFIE_STEP_MAX_ATTEMPTS)
    ledger = QuotaLedger(DjangoQuotaStore())
    selector = ProviderSelector(DjangoProviderStore(), DjangoProviderMetricsStore())
    queue = JobQueue(
        jobs=job_store,
        orders=DjangoOrderStore(),
        steps=steps,
        publisher=publisher,
        ledger=ledger,
        config=QueueConfig.from_settings(),
    )

    runner = None
    if with_runner or backend_client is not None:
        context = HandlerContext(
            backend=backend_client or get_backend_client(),
            selector=selector,
        )
        runner = JobRunner(
            queue,
            steps,
            context,
            job_handlers=job_handlers,
            step_handlers=step_handlers,
        )

    return Orchestrator(
        queue=queue,
        steps=steps,
        publisher=publisher,
        ledger=ledger,
        selector=selector,
        monitor=QueueMonitor(job_store, settings.ALFIE_STUCK_THRESHOLD_S),
        runner=runner,
    )
