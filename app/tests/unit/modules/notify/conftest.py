"""Fixtures wiring the notification pipeline over in-memory stores."""

import pytest

from infrastructure.events import EventBus
from infrastructure.idempotency import DedupKeyBuilder, InMemoryDedupIndex
from infrastructure.queue import InMemoryJobQueue
from modules.notify.channels import ChannelRegistry
from modules.notify.dedup import DedupFilter
from modules.notify.digest import DigestService
from modules.notify.dlq import DlqManager
from modules.notify.domain import ChannelCode, RenderedTemplate
from modules.notify.executor import DeliveryExecutor
from modules.notify.planner import NotificationPlanner
from modules.notify.preferences import PreferenceEvaluator, ScopedPreferenceResolver
from modules.notify.recipients import RecipientResolver
from modules.notify.rules import RuleMatcher
from modules.notify.service import NotifyStores
from modules.notify.templates import InMemoryTemplateRenderer
from tests.factories.notify import FakeAdapter, make_principal


@pytest.fixture
def stores():
    stores = NotifyStores()
    stores.directory.add_principal(
        make_principal("alice", org_unit_ids=["finance"]),
        roles=["approver"],
        groups=["ops"],
    )
    stores.directory.add_principal(
        make_principal(
            "bob",
            email="bob@example.com",
            phone="+15551230002",
            chat_handle="U-BOB",
        ),
        roles=["approver"],
    )
    stores.directory.add_principal(
        make_principal("carol", email=None, phone=None, chat_handle=None),
        roles=["auditor"],
    )
    return stores


@pytest.fixture
def email_adapter():
    return FakeAdapter(ChannelCode.EMAIL)


@pytest.fixture
def sms_adapter():
    return FakeAdapter(ChannelCode.SMS)


@pytest.fixture
def registry(email_adapter, sms_adapter):
    registry = ChannelRegistry()
    registry.register(email_adapter)
    registry.register(sms_adapter)
    return registry


@pytest.fixture
def queue():
    return InMemoryJobQueue()


@pytest.fixture
def renderer():
    renderer = InMemoryTemplateRenderer()
    renderer.add(
        "order.approved",
        RenderedTemplate(
            subject="Order {order_id} approved",
            body_text="Hello {recipient_name}, order {order_id} was approved.",
        ),
    )
    return renderer


@pytest.fixture
def evaluator(stores):
    return PreferenceEvaluator(
        stores.preferences,
        stores.suppressions,
        scoped_resolver=ScopedPreferenceResolver(stores.preferences, stores.directory),
        max_workers=2,
    )


@pytest.fixture
def digest_service(stores, registry, renderer, queue):
    return DigestService(
        stores.digest_staging,
        stores.messages,
        stores.deliveries,
        registry,
        renderer,
        queue,
    )


@pytest.fixture
def dlq_manager(stores, queue):
    return DlqManager(stores.dlq, stores.deliveries, queue)


@pytest.fixture
def dedup_filter():
    return DedupFilter(InMemoryDedupIndex(), DedupKeyBuilder("notify-dedup"))


@pytest.fixture
def planner(stores, evaluator, dedup_filter, registry, renderer, digest_service, queue):
    return NotificationPlanner(
        RuleMatcher(stores.rules),
        RecipientResolver(stores.directory),
        evaluator,
        dedup_filter,
        registry,
        renderer,
        digest_service,
        stores.messages,
        stores.deliveries,
        queue,
    )


@pytest.fixture
def event_bus():
    bus = EventBus(max_workers=2)
    yield bus
    bus.shutdown()


@pytest.fixture
def executor(
    stores, registry, evaluator, digest_service, dlq_manager, queue, renderer, event_bus
):
    return DeliveryExecutor(
        stores.deliveries,
        stores.messages,
        registry,
        evaluator,
        digest_service,
        dlq_manager,
        queue,
        renderer,
        stores.suppressions,
        consents=stores.consents,
        event_bus=event_bus,
    )
