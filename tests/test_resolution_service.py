"""Tests for delivery URL resolution."""

from __future__ import annotations

import httpx
import pytest

from asset_uploader.config import ResolutionConfig
from asset_uploader.errors import PlatformGraphQLError, ResolutionExhausted
from asset_uploader.models.upload_models import CreatedResource, ResolutionOutcome, ResourceStatus
from asset_uploader.services.resolution_service import (
    ResolutionService,
    UrlProber,
    alternate_patterns,
    alternate_versions,
    strip_version,
    with_version,
)
from asset_uploader.services.transport import HttpTransport, TransportResponse
from stubs import StubPlatform, StubProber, StubTransport, transport_failure

ORIGINAL = "https://cdn.example.com/files/a.jpg?v=123"
VERSIONLESS = "https://cdn.example.com/files/a.jpg"
RESOURCE_ID = "gid://shopify/MediaImage/42"
NOW = 1_700_000_000.0


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _service(prober: StubProber, platform: StubPlatform | None = None, **config) -> tuple[ResolutionService, SleepRecorder]:
    sleep = SleepRecorder()
    service = ResolutionService(
        prober,
        platform=platform,
        config=ResolutionConfig(**config),
        sleep=sleep,
        clock=lambda: NOW,
    )
    return service, sleep


@pytest.mark.asyncio
async def test_reachable_url_resolves_on_first_probe() -> None:
    prober = StubProber({ORIGINAL})
    platform = StubPlatform()
    service, sleep = _service(prober, platform)

    result = await service.resolve(ORIGINAL, RESOURCE_ID)

    assert result.resolved
    assert result.resolved_url == ORIGINAL
    assert result.strategy == "start"
    assert prober.calls == [ORIGINAL]
    assert platform.events == []
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_unreachable_everywhere_exhausts_all_strategies() -> None:
    prober = StubProber()
    service, sleep = _service(prober)

    result = await service.resolve(ORIGINAL)

    assert not result.resolved
    assert result.resolved_url == ORIGINAL
    assert prober.calls == [
        ORIGINAL,
        VERSIONLESS,
        f"{VERSIONLESS}?v=1700000000",
        f"{VERSIONLESS}?v=1699999700",
        f"{VERSIONLESS}?v=1700000300",
        f"{VERSIONLESS}?v=1",
        f"{VERSIONLESS}?v=0",
        ORIGINAL,
        ORIGINAL,
        ORIGINAL,
    ]
    assert sleep.delays == [2.0, 4.0, 8.0]
    assert all(a.outcome is ResolutionOutcome.UNREACHABLE for a in result.attempts)
    assert [a.strategy_name for a in result.attempts][-3:] == ["backoff_retry"] * 3


@pytest.mark.asyncio
async def test_exhaustion_with_resource_id_runs_patterns_and_requery() -> None:
    prober = StubProber()
    platform = StubPlatform()
    platform.resources[RESOURCE_ID] = CreatedResource(
        id=RESOURCE_ID,
        status=ResourceStatus.PROCESSING,
        delivery_url="https://cdn.example.com/files/a_v2.jpg",
    )
    service, _ = _service(prober, platform)

    result = await service.resolve(ORIGINAL, RESOURCE_ID)

    assert not result.resolved
    strategies = [a.strategy_name for a in result.attempts]
    assert "alternate_pattern" in strategies
    assert "requery" in strategies
    assert platform.events == [("query", RESOURCE_ID)]
    assert f"{VERSIONLESS}?id={RESOURCE_ID}" in prober.calls
    assert "https://cdn.example.com/files/a.webp" in prober.calls
    # the bare URL was already probed as the versionless candidate
    assert prober.calls.count(VERSIONLESS) == 1


@pytest.mark.asyncio
async def test_alternate_patterns_need_a_resource_id() -> None:
    prober = StubProber()
    service, _ = _service(prober, StubPlatform())

    await service.resolve(ORIGINAL)

    assert not any("id=" in call for call in prober.calls)
    assert not any(call.endswith(".png") for call in prober.calls)


@pytest.mark.asyncio
async def test_versionless_candidate_resolves() -> None:
    prober = StubProber({VERSIONLESS})
    service, _ = _service(prober)

    result = await service.resolve(ORIGINAL)

    assert result.resolved_url == VERSIONLESS
    assert result.strategy == "versionless"
    assert prober.calls == [ORIGINAL, VERSIONLESS]


@pytest.mark.asyncio
async def test_alternate_version_resolves() -> None:
    prober = StubProber({f"{VERSIONLESS}?v=1"})
    service, sleep = _service(prober)

    result = await service.resolve(ORIGINAL)

    assert result.resolved_url == f"{VERSIONLESS}?v=1"
    assert result.strategy == "alternate_version"
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_alternate_extension_resolves() -> None:
    target = "https://cdn.example.com/files/a.png"
    prober = StubProber({target})
    service, _ = _service(prober, StubPlatform())

    result = await service.resolve(ORIGINAL, RESOURCE_ID)

    assert result.resolved_url == target
    assert result.strategy == "alternate_pattern"
    assert prober.calls[-1] == target


@pytest.mark.asyncio
async def test_requery_url_resolves() -> None:
    fresh = "https://cdn.example.com/files/a_v2.jpg?v=999"
    prober = StubProber({fresh})
    platform = StubPlatform()
    platform.resources[RESOURCE_ID] = CreatedResource(id=RESOURCE_ID, status=ResourceStatus.READY, delivery_url=fresh)
    service, sleep = _service(prober, platform)

    result = await service.resolve(ORIGINAL, RESOURCE_ID)

    assert result.resolved_url == fresh
    assert result.strategy == "requery"
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_requery_failure_falls_through_to_backoff() -> None:
    prober = StubProber()
    platform = StubPlatform()
    platform.resources[RESOURCE_ID] = PlatformGraphQLError(["Throttled"])
    service, sleep = _service(prober, platform)

    result = await service.resolve(ORIGINAL, RESOURCE_ID)

    assert not result.resolved
    assert sleep.delays == [2.0, 4.0, 8.0]


@pytest.mark.asyncio
async def test_backoff_retry_recovers_original_url() -> None:
    prober = StubProber()
    prober.is_reachable = lambda url: url == ORIGINAL and prober.calls.count(ORIGINAL) >= 3
    service, sleep = _service(prober)

    result = await service.resolve(ORIGINAL)

    assert result.resolved_url == ORIGINAL
    assert result.strategy == "backoff_retry"
    assert sleep.delays == [2.0, 4.0]


@pytest.mark.asyncio
async def test_max_retries_override() -> None:
    prober = StubProber()
    service, sleep = _service(prober)

    result = await service.resolve(ORIGINAL, max_retries=1)

    assert not result.resolved
    assert sleep.delays == [2.0]


@pytest.mark.asyncio
async def test_resolve_or_raise_signals_exhaustion() -> None:
    service, _ = _service(StubProber(), max_retries=0)

    with pytest.raises(ResolutionExhausted) as exc_info:
        await service.resolve_or_raise(ORIGINAL)

    assert exc_info.value.url == ORIGINAL
    assert len(exc_info.value.attempts) == 7


@pytest.mark.asyncio
async def test_resolve_with_fallback_returns_fallback_unchanged() -> None:
    fallback = "https://origin.example.com/source/a.jpg?token=abc"
    service, _ = _service(StubProber(), max_retries=2)

    assert await service.resolve_with_fallback(ORIGINAL, fallback) == fallback


@pytest.mark.asyncio
async def test_resolve_with_fallback_prefers_resolved_url() -> None:
    service, _ = _service(StubProber({VERSIONLESS}))

    assert await service.resolve_with_fallback(ORIGINAL, "https://fallback.example.com/a.jpg") == VERSIONLESS


@pytest.mark.asyncio
async def test_resolve_many_maps_each_url() -> None:
    good = "https://cdn.example.com/files/good.jpg"
    bad = "https://cdn.example.com/files/bad.jpg?v=1"
    service, _ = _service(StubProber({good}), max_retries=0)

    resolved = await service.resolve_many([good, bad], [None])

    assert resolved == {good: good, bad: bad}


@pytest.mark.asyncio
async def test_empty_url_is_not_probed() -> None:
    prober = StubProber()
    service, _ = _service(prober)

    result = await service.resolve("")

    assert not result.resolved
    assert prober.calls == []


def test_strip_version_keeps_other_parameters() -> None:
    assert strip_version("https://x.test/a.jpg?v=1&width=100") == "https://x.test/a.jpg?width=100"
    assert strip_version("https://x.test/a.jpg?width=100&v=1") == "https://x.test/a.jpg?width=100"
    assert strip_version("https://x.test/a.jpg") == "https://x.test/a.jpg"


def test_with_version_replaces_in_place_or_appends() -> None:
    assert with_version("https://x.test/a.jpg?width=100&v=5", "9") == "https://x.test/a.jpg?width=100&v=9"
    assert with_version("https://x.test/a.jpg?width=100", "9") == "https://x.test/a.jpg?width=100&v=9"
    assert with_version("https://x.test/a.jpg", "9") == "https://x.test/a.jpg?v=9"


def test_alternate_versions_cover_time_window_and_literals() -> None:
    versions = alternate_versions("https://x.test/a.jpg?v=5", 1000.0, offset_seconds=300)
    assert versions == [
        "https://x.test/a.jpg?v=1000",
        "https://x.test/a.jpg?v=700",
        "https://x.test/a.jpg?v=1300",
        "https://x.test/a.jpg?v=1",
        "https://x.test/a.jpg?v=0",
    ]


def test_alternate_patterns_for_image_and_non_image_paths() -> None:
    extensions = [".jpg", ".jpeg", ".png", ".webp"]
    assert alternate_patterns("https://x.test/a.JPG?v=1#top", "42", extensions) == [
        "https://x.test/a.JPG",
        "https://x.test/a.JPG?id=42",
        "https://x.test/a.JPG?image_id=42",
        "https://x.test/a.jpeg",
        "https://x.test/a.png",
        "https://x.test/a.webp",
    ]
    assert alternate_patterns("https://x.test/doc.pdf", "42", extensions) == [
        "https://x.test/doc.pdf",
        "https://x.test/doc.pdf?id=42",
        "https://x.test/doc.pdf?image_id=42",
    ]


@pytest.mark.asyncio
async def test_prober_treats_status_and_transport_failures_as_unreachable() -> None:
    def handler(method, url, headers, body):
        if "missing" in url:
            return TransportResponse(status_code=404)
        if "slow" in url:
            return transport_failure("timed out", timed_out=True)
        return TransportResponse(status_code=200)

    transport = StubTransport(handler)
    prober = UrlProber(transport, timeout=10.0, headers={"User-Agent": "probe"})

    ok = await prober.probe("https://cdn.example.com/ok.jpg")
    missing = await prober.probe("https://cdn.example.com/missing.jpg")
    slow = await prober.probe("https://cdn.example.com/slow.jpg")

    assert ok.reachable and ok.outcome is ResolutionOutcome.ACCESSIBLE
    assert not missing.reachable and missing.outcome is ResolutionOutcome.UNREACHABLE
    assert not slow.reachable and slow.timed_out and slow.outcome is ResolutionOutcome.ERROR
    assert transport.calls[0]["method"] == "GET"
    assert transport.calls[0]["timeout"] == 10.0
    assert transport.calls[0]["headers"] == {"User-Agent": "probe"}


@pytest.mark.asyncio
async def test_malformed_url_falls_back_without_raising() -> None:
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
    prober = UrlProber(HttpTransport(client), timeout=10.0, headers={})
    service, _ = _service(prober, max_retries=1)
    broken = "https://cdn.example.com/a b\x00.jpg?v=1"

    probe = await prober.probe(broken)
    fallback = await service.resolve_with_fallback(broken, "https://origin.example.com/a.jpg")
    resolved = await service.resolve_many([broken])

    assert not probe.reachable
    assert fallback == "https://origin.example.com/a.jpg"
    assert resolved == {broken: broken}
    await client.aclose()
