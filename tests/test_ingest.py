import asyncio
import json
from datetime import date
from decimal import Decimal

import httpx
import pendulum
import pytest
import respx

from catalog_sync.errors import (
    IntegrationConfigError,
    PublishError,
    UpstreamAuthError,
    UpstreamFormatError,
    UpstreamUnavailable,
)
from catalog_sync.ingest.clients import ClientRegistry
from catalog_sync.ingest.fetcher import CatalogFetcher, PayloadCache
from catalog_sync.ingest.models import Integration, IntegrationType, ProductRecord, Store
from catalog_sync.ingest.publish import CatalogPublisher
from catalog_sync.ingest.rp import RPClient
from catalog_sync.utils.dates import day_window

RP_BASE = "https://rp.example.com"
CV_BASE = "https://cv.example.com"
PAGED_ENDPOINT = "/v1.1/produtounidade/listaprodutos/{lastId}/unidade/{storeReg}/detalhado"
STORE = Store(id=1, name="Loja 1", registration="12345678000001", document="99887766000155")


def _rp(**overrides):
    config = {
        "base_url": RP_BASE,
        "auth_method": "TOKEN",
        "static_token": "rp-secret",
        "products_endpoint": PAGED_ENDPOINT,
    }
    config.update(overrides)
    return Integration(id=1, name="RP", type=IntegrationType.RP, config=config)


def _crescevendas():
    return Integration(
        id=2,
        name="CresceVendas",
        type=IntegrationType.CRESCEVENDAS,
        config={
            "base_url": CV_BASE,
            "auth_headers": {"X-AdminUser-Email": "ops@example.com", "X-AdminUser-Token": "cv-token"},
        },
    )


def _page_url(last_id, key=STORE.upstream_key):
    return f"{RP_BASE}/v1.1/produtounidade/listaprodutos/{last_id}/unidade/{key}/detalhado"


@pytest.mark.asyncio
async def test_rp_token_pagination_follows_last_id():
    async with respx.mock(assert_all_called=True) as router:
        first = router.get(_page_url(0)).mock(
            return_value=httpx.Response(
                200,
                json={"response": [{"id": 10, "codigo": 1, "preco": 2}, {"id": 11, "codigo": 2, "preco": 3}]},
            )
        )
        router.get(_page_url(11)).mock(return_value=httpx.Response(200, json={"response": []}))
        async with httpx.AsyncClient(transport=httpx.MockTransport(router.async_handler)) as session:
            client = RPClient(_rp(), session=session, retries=1, retry_delay=0)
            products = await client.fetch_products(STORE.upstream_key)
    assert [item["codigo"] for item in products] == [1, 2]
    assert first.calls.last.request.headers["Authorization"] == "rp-secret"


@pytest.mark.asyncio
async def test_rp_keeps_non_object_items_and_pages_on_last_object():
    async with respx.mock(assert_all_called=True) as router:
        router.get(_page_url(0)).mock(
            return_value=httpx.Response(200, json={"response": [{"id": 10, "codigo": 1, "preco": 2}, "junk"]})
        )
        router.get(_page_url(10)).mock(return_value=httpx.Response(200, json={"response": []}))
        async with httpx.AsyncClient(transport=httpx.MockTransport(router.async_handler)) as session:
            client = RPClient(_rp(), session=session, retries=1, retry_delay=0)
            products = await client.fetch_products(STORE.upstream_key)
    assert products == [{"id": 10, "codigo": 1, "preco": 2}, "junk"]


@pytest.mark.asyncio
async def test_rp_login_and_relogin_on_expired_token():
    endpoint = "/produtos/{storeReg}"
    integration = _rp(
        auth_method="LOGIN",
        static_token=None,
        login_endpoint="/auth",
        username="user",
        password="pass",
        products_endpoint=endpoint,
        pagination={"additional_params": {"ativo": "S"}},
    )
    async with respx.mock(assert_all_called=True) as router:
        login = router.post(f"{RP_BASE}/auth").mock(
            side_effect=[
                httpx.Response(200, json={"response": {"token": "first"}}),
                httpx.Response(200, json={"response": {"token": "second"}}),
            ]
        )
        products = router.get(f"{RP_BASE}/produtos/{STORE.upstream_key}", params={"ativo": "S"}).mock(
            side_effect=[
                httpx.Response(401),
                httpx.Response(200, json={"response": [{"codigo": 5, "preco": "1.00"}]}),
            ]
        )
        async with httpx.AsyncClient(transport=httpx.MockTransport(router.async_handler)) as session:
            client = RPClient(integration, session=session, retries=1, retry_delay=0)
            result = await client.fetch_products(STORE.upstream_key)
    assert result == [{"codigo": 5, "preco": "1.00"}]
    assert json.loads(login.calls[0].request.content) == {"usuario": "user", "senha": "pass"}
    assert products.calls.last.request.headers["Authorization"] == "second"


@pytest.mark.asyncio
async def test_rp_status_codes_map_to_error_kinds():
    async with respx.mock() as router:
        route = router.get(_page_url(0))
        async with httpx.AsyncClient(transport=httpx.MockTransport(router.async_handler)) as session:
            client = RPClient(_rp(), session=session, retries=1, retry_delay=0)
            route.mock(return_value=httpx.Response(403))
            with pytest.raises(UpstreamAuthError):
                await client.fetch_products(STORE.upstream_key)
            route.mock(return_value=httpx.Response(503))
            with pytest.raises(UpstreamUnavailable):
                await client.fetch_products(STORE.upstream_key)
            route.mock(return_value=httpx.Response(200, json={"data": []}))
            with pytest.raises(UpstreamFormatError):
                await client.fetch_products(STORE.upstream_key)
            route.mock(return_value=httpx.Response(200, text="<html>maintenance</html>"))
            with pytest.raises(UpstreamFormatError):
                await client.fetch_products(STORE.upstream_key)
            route.mock(side_effect=httpx.ConnectError("refused"))
            with pytest.raises(UpstreamUnavailable):
                await client.fetch_products(STORE.upstream_key)


def test_rp_requires_endpoint_and_auth_method():
    with pytest.raises(IntegrationConfigError):
        RPClient(_rp(products_endpoint=None))
    with pytest.raises(IntegrationConfigError):
        RPClient(_rp(auth_method="OAUTH"))


@pytest.mark.asyncio
async def test_crescevendas_get_active_products(settings):
    async with respx.mock(assert_all_called=True) as router:
        route = router.get(f"{CV_BASE}/admin/integrations/discount_stores").mock(
            return_value=httpx.Response(200, json={"response": {"discounts": [{"code": "9", "price": 3}]}})
        )
        async with httpx.AsyncClient(transport=httpx.MockTransport(router.async_handler)) as session:
            clients = ClientRegistry(settings, session=session, retries=1, retry_delay=0)
            client = clients.crescevendas(_crescevendas())
            discounts = await client.get_active_products(STORE.registration, date(2024, 5, 1))
    assert discounts == [{"code": "9", "price": 3}]
    request = route.calls.last.request
    assert request.url.params["start_date"] == "2024-05-01T00:01:00"
    assert request.url.params["end_date"] == "2024-05-01T23:59:00"
    assert request.headers["X-AdminUser-Token"] == "cv-token"


@pytest.mark.asyncio
async def test_publish_sends_batch_upload(settings):
    records = [
        ProductRecord(code=1, price=Decimal("10.00"), final_price=Decimal("8.50"), limit=5, store_id=1),
    ]
    async with respx.mock(assert_all_called=True) as router:
        route = router.post(f"{CV_BASE}/admin/integrations/discount_stores/batch_upload").mock(
            return_value=httpx.Response(200, json={"response": "ok"})
        )
        async with httpx.AsyncClient(transport=httpx.MockTransport(router.async_handler)) as session:
            publisher = CatalogPublisher(ClientRegistry(settings, session=session, retries=1, retry_delay=0))
            sent = await publisher.publish(STORE, _crescevendas(), records, window=day_window(date(2024, 5, 1)))
    assert sent == 1
    body = json.loads(route.calls.last.request.content)
    assert body["override"] == 1
    assert body["start_date"] == "2024-05-01T00:00"
    assert body["end_date"] == "2024-05-01T23:59"
    assert body["store_registrations"] == [STORE.registration]
    assert body["name"] == "000 Descontos - 2024-05-01"
    assert body["discount_store_lines"] == [{"code": "1", "price": 10.0, "final_price": 8.5, "limit": 5}]


@pytest.mark.asyncio
async def test_publish_errors(settings):
    records = [ProductRecord(code=1, price=Decimal("1"), final_price=Decimal("1"), limit=1, store_id=1)]
    window = day_window(date(2024, 5, 1))
    async with respx.mock() as router:
        route = router.post(f"{CV_BASE}/admin/integrations/discount_stores/batch_upload")
        async with httpx.AsyncClient(transport=httpx.MockTransport(router.async_handler)) as session:
            publisher = CatalogPublisher(ClientRegistry(settings, session=session, retries=1, retry_delay=0))
            assert await publisher.publish(STORE, _crescevendas(), [], window=window) == 0
            route.mock(return_value=httpx.Response(500))
            with pytest.raises(PublishError):
                await publisher.publish(STORE, _crescevendas(), records, window=window)
            route.mock(return_value=httpx.Response(401))
            with pytest.raises(UpstreamAuthError):
                await publisher.publish(STORE, _crescevendas(), records, window=window)
            with pytest.raises(IntegrationConfigError):
                publisher.check_target(_rp())


@pytest.mark.asyncio
async def test_fetcher_caches_unless_forced(settings):
    async with respx.mock(assert_all_called=True) as router:
        route = router.get(_page_url(0)).mock(
            return_value=httpx.Response(200, json={"response": [{"codigo": 1, "preco": 2}]})
        )
        async with httpx.AsyncClient(transport=httpx.MockTransport(router.async_handler)) as session:
            clients = ClientRegistry(settings, session=session, retries=1, retry_delay=0)
            fetcher = CatalogFetcher(settings, clients, cache=PayloadCache(ttl_seconds=300))
            first = await fetcher.fetch(STORE, _rp())
            cached = await fetcher.fetch(STORE, _rp())
            forced = await fetcher.fetch(STORE, _rp(), force=True)
    # One record, no id to page on: a single request per upstream fetch.
    assert route.call_count == 2
    assert not first.from_cache
    assert cached.from_cache and cached.records == first.records
    assert not forced.from_cache


@pytest.mark.asyncio
async def test_fetcher_cache_is_per_anchor_day(settings):
    async with respx.mock(assert_all_called=True) as router:
        route = router.get(f"{CV_BASE}/admin/integrations/discount_stores").mock(
            return_value=httpx.Response(200, json={"response": {"discounts": [{"code": "9", "price": 3}]}})
        )
        async with httpx.AsyncClient(transport=httpx.MockTransport(router.async_handler)) as session:
            clients = ClientRegistry(settings, session=session, retries=1, retry_delay=0)
            fetcher = CatalogFetcher(settings, clients, cache=PayloadCache(ttl_seconds=300))
            first = await fetcher.fetch(STORE, _crescevendas(), day=date(2024, 5, 1))
            next_day = await fetcher.fetch(STORE, _crescevendas(), day=date(2024, 5, 2))
            again = await fetcher.fetch(STORE, _crescevendas(), day=date(2024, 5, 1))
    assert route.call_count == 2
    assert not first.from_cache
    assert not next_day.from_cache
    assert again.from_cache
    assert [call.request.url.params["start_date"] for call in route.calls] == [
        "2024-05-01T00:01:00",
        "2024-05-02T00:01:00",
    ]


def test_payload_cache_prunes_expired_entries():
    cache = PayloadCache(ttl_seconds=60)
    old = pendulum.datetime(2024, 5, 1, 10, 0, tz="UTC")
    cache.set(PayloadCache.key(1, 1, date(2024, 5, 1)), [{"codigo": 1}], fetched_at=old)
    cache.set(PayloadCache.key(1, 2, date(2024, 5, 1)), [{"codigo": 2}], fetched_at=old.add(minutes=5))
    assert cache.get(PayloadCache.key(1, 1, date(2024, 5, 1)), now=old.add(minutes=5)) is None
    assert list(cache._data) == ["1:2:2024-05-01"]


@pytest.mark.asyncio
async def test_fetcher_timeout_is_unavailable(settings):
    class SlowClient:
        async def fetch_products(self, store_key):
            await asyncio.sleep(1)
            return []

    async with httpx.AsyncClient() as session:
        clients = ClientRegistry(settings, session=session)
        clients.rp = lambda integration: SlowClient()
        fetcher = CatalogFetcher(settings, clients)
        with pytest.raises(UpstreamUnavailable):
            await fetcher.fetch(STORE, _rp(), timeout=0.01)
