import json

import httpx
import pytest

from mailpilot.notifications import InMemoryNotifier, WebhookNotifier, dispatch


@pytest.mark.asyncio
async def test_dispatch_swallows_delivery_failure():
    notifier = InMemoryNotifier()
    notifier.fail_with = RuntimeError("smtp down")

    assert await dispatch(notifier, "a@x.com", "oauth-reauth", {}) is False
    assert notifier.sent == []


@pytest.mark.asyncio
async def test_dispatch_records_notification():
    notifier = InMemoryNotifier()

    assert await dispatch(notifier, "a@x.com", "oauth-reauth", {"k": "v"})
    assert notifier.sent[0].to == "a@x.com"
    assert notifier.sent[0].data == {"k": "v"}


@pytest.mark.asyncio
async def test_webhook_notifier_posts_json():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(json.loads(request.content))
        return httpx.Response(202)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    notifier = WebhookNotifier("http://mailer.test/send", client=client)

    await notifier.send("a@x.com", "onboarding-complete", {"first_name": "Sam"})
    await notifier.close()

    assert seen == {
        "to": "a@x.com",
        "template": "onboarding-complete",
        "data": {"first_name": "Sam"},
    }


@pytest.mark.asyncio
async def test_webhook_notifier_failure_is_reported_by_dispatch():
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(500))
    )
    notifier = WebhookNotifier("http://mailer.test/send", client=client)

    assert await dispatch(notifier, "a@x.com", "deployment-failure", {}) is False
