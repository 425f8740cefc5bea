# services/resolution_service.py
"""Delivery URL resolution.

A freshly uploaded asset's delivery URL can 404 for a while: the CDN has
not picked it up yet, the cache-busting `v` parameter points at a version
that is not served, or the platform has since moved the file. The engine
walks a fixed sequence of states, probing candidate URLs, and stops at the
first one that answers with a 2xx:

    START -> TRY_VERSIONLESS -> TRY_ALT_VERSIONS -> TRY_ALT_PATTERNS* -> REQUERY* -> BACKOFF_RETRY -> FAILED

States marked * only run when the caller knows the resource id. An
unreachable candidate is ordinary flow, not an error.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set
from urllib.parse import quote, urlsplit, urlunsplit

from asset_uploader.config import ResolutionConfig
from asset_uploader.errors import PlatformError, ResolutionExhausted, TransportError
from asset_uploader.models.upload_models import ProbeResult, ResolutionAttempt, ResolutionResult
from asset_uploader.services.platform_client import PlatformClient
from asset_uploader.services.transport import HttpTransport

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], float]

VERSION_PARAM = "v"


class ResolutionState(str, Enum):
    START = "start"
    TRY_VERSIONLESS = "versionless"
    TRY_ALT_VERSIONS = "alternate_version"
    TRY_ALT_PATTERNS = "alternate_pattern"
    REQUERY = "requery"
    BACKOFF_RETRY = "backoff_retry"
    RESOLVED = "resolved"
    FAILED = "failed"


class UrlProber:
    """One GET per probe; transport failures and timeouts come back as unreachable"""

    def __init__(
        self,
        transport: HttpTransport,
        timeout: float = 10.0,
        headers: Optional[Mapping[str, str]] = None,
    ):
        self.transport = transport
        self.timeout = timeout
        self.headers = dict(headers or {})

    async def probe(self, url: str) -> ProbeResult:
        if not url:
            return ProbeResult(url=url or "", reachable=False, error="empty url")
        try:
            response = await self.transport.send("GET", url, headers=self.headers, timeout=self.timeout)
        except TransportError as e:
            return ProbeResult(url=url, reachable=False, timed_out=e.timed_out, error=str(e))
        return ProbeResult(url=url, reachable=response.is_success, status_code=response.status_code)


def _query_segments(query: str) -> List[str]:
    return [segment for segment in query.split("&") if segment]


def _segment_name(segment: str) -> str:
    return segment.split("=", 1)[0]


def strip_version(url: str) -> str:
    """Drop the cache-busting `v` parameter, keeping every other parameter as written"""
    parts = urlsplit(url)
    kept = [s for s in _query_segments(parts.query) if _segment_name(s) != VERSION_PARAM]
    return urlunsplit(parts._replace(query="&".join(kept)))


def with_version(url: str, version: str) -> str:
    """Set `v` to the given value, in place if present, appended otherwise"""
    parts = urlsplit(url)
    segments = _query_segments(parts.query)
    replacement = f"{VERSION_PARAM}={version}"
    if any(_segment_name(s) == VERSION_PARAM for s in segments):
        segments = [replacement if _segment_name(s) == VERSION_PARAM else s for s in segments]
    else:
        segments.append(replacement)
    return urlunsplit(parts._replace(query="&".join(segments)))


def alternate_versions(url: str, now: float, offset_seconds: int = 300) -> List[str]:
    stamp = int(now)
    versions = [stamp, stamp - offset_seconds, stamp + offset_seconds, 1, 0]
    return _unique(with_version(url, str(v)) for v in versions)


def alternate_patterns(url: str, resource_id: str, extensions: Sequence[str]) -> List[str]:
    """Bare URL, id-qualified variants, then the same path under other image extensions"""
    parts = urlsplit(url)
    base = urlunsplit(parts._replace(query="", fragment=""))
    quoted_id = quote(resource_id, safe=":/")

    candidates = [
        base,
        f"{base}?id={quoted_id}",
        f"{base}?image_id={quoted_id}",
    ]

    lowered = parts.path.lower()
    current = next((ext for ext in extensions if lowered.endswith(ext.lower())), None)
    if current is not None:
        stem = parts.path[: len(parts.path) - len(current)]
        for ext in extensions:
            if ext.lower() != current.lower():
                candidates.append(urlunsplit(parts._replace(path=stem + ext, query="", fragment="")))

    return _unique(candidates)


def _unique(urls: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(urls))


@dataclass
class _Run:
    original_url: str
    resource_id: Optional[str]
    max_retries: int
    attempts: List[ResolutionAttempt] = field(default_factory=list)
    probed: Set[str] = field(default_factory=set)
    resolved_url: Optional[str] = None
    strategy: Optional[str] = None


class ResolutionService:
    def __init__(
        self,
        prober: UrlProber,
        platform: Optional[PlatformClient] = None,
        config: Optional[ResolutionConfig] = None,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = time.time,
    ):
        self.prober = prober
        self.platform = platform
        self.config = config or ResolutionConfig()
        self._sleep = sleep
        self._clock = clock
        self._handlers = {
            ResolutionState.START: self._start,
            ResolutionState.TRY_VERSIONLESS: self._try_versionless,
            ResolutionState.TRY_ALT_VERSIONS: self._try_alt_versions,
            ResolutionState.TRY_ALT_PATTERNS: self._try_alt_patterns,
            ResolutionState.REQUERY: self._requery,
            ResolutionState.BACKOFF_RETRY: self._backoff_retry,
        }

    async def is_accessible(self, url: str) -> bool:
        return (await self.prober.probe(url)).reachable

    async def resolve(
        self,
        url: str,
        resource_id: Optional[str] = None,
        max_retries: Optional[int] = None,
    ) -> ResolutionResult:
        """Run the recovery state machine; never raises for an unreachable URL"""
        if not url:
            return ResolutionResult(original_url=url or "", resolved_url=url or "", resolved=False)

        run = _Run(
            original_url=url,
            resource_id=resource_id or None,
            max_retries=self.config.max_retries if max_retries is None else max_retries,
        )
        state = ResolutionState.START
        while state not in (ResolutionState.RESOLVED, ResolutionState.FAILED):
            logger.debug("Resolution of %s entering %s", url, state.value)
            state = await self._handlers[state](run)

        if state is ResolutionState.RESOLVED:
            logger.info("Resolved %s via %s -> %s", url, run.strategy, run.resolved_url)
            return ResolutionResult(
                original_url=url,
                resolved_url=run.resolved_url,
                resolved=True,
                strategy=run.strategy,
                attempts=run.attempts,
            )

        logger.warning("All delivery URL recovery strategies failed for %s", url)
        return ResolutionResult(original_url=url, resolved_url=url, resolved=False, attempts=run.attempts)

    async def resolve_or_raise(
        self,
        url: str,
        resource_id: Optional[str] = None,
        max_retries: Optional[int] = None,
    ) -> str:
        result = await self.resolve(url, resource_id, max_retries)
        if not result.resolved:
            raise ResolutionExhausted(url, result.attempts)
        return result.resolved_url

    async def resolve_with_fallback(
        self,
        candidate_url: str,
        fallback_url: str,
        resource_id: Optional[str] = None,
    ) -> str:
        result = await self.resolve(candidate_url, resource_id)
        if result.resolved:
            return result.resolved_url
        logger.warning("Delivery URL %s not accessible, using fallback %s", candidate_url, fallback_url)
        return fallback_url

    async def resolve_many(
        self,
        urls: Sequence[str],
        resource_ids: Optional[Sequence[Optional[str]]] = None,
    ) -> Dict[str, str]:
        """Resolve each URL on its own; unresolved entries map to themselves"""
        resolved: Dict[str, str] = {}
        for index, url in enumerate(urls):
            resource_id = resource_ids[index] if resource_ids and index < len(resource_ids) else None
            result = await self.resolve(url, resource_id)
            resolved[url] = result.resolved_url
        return resolved

    async def _try(self, run: _Run, candidates: Iterable[str], strategy: str, dedupe: bool = True) -> bool:
        """Probe candidates in order; True on the first reachable one.

        With `dedupe`, a candidate already probed in this run is skipped without
        an attempt entry. A URL with no `v` parameter therefore records no
        versionless attempt, since its versionless form is the original URL.
        """
        for candidate in candidates:
            if dedupe and candidate in run.probed:
                continue
            run.probed.add(candidate)
            probe = await self.prober.probe(candidate)
            run.attempts.append(
                ResolutionAttempt(candidate_url=candidate, strategy_name=strategy, outcome=probe.outcome)
            )
            logger.debug("Probe %s [%s]: %s", candidate, strategy, probe.outcome.value)
            if probe.reachable:
                run.resolved_url = candidate
                run.strategy = strategy
                return True
        return False

    async def _start(self, run: _Run) -> ResolutionState:
        if await self._try(run, [run.original_url], ResolutionState.START.value):
            return ResolutionState.RESOLVED
        return ResolutionState.TRY_VERSIONLESS

    async def _try_versionless(self, run: _Run) -> ResolutionState:
        candidate = strip_version(run.original_url)
        if await self._try(run, [candidate], ResolutionState.TRY_VERSIONLESS.value):
            return ResolutionState.RESOLVED
        return ResolutionState.TRY_ALT_VERSIONS

    async def _try_alt_versions(self, run: _Run) -> ResolutionState:
        candidates = alternate_versions(run.original_url, self._clock(), self.config.version_offset_seconds)
        if await self._try(run, candidates, ResolutionState.TRY_ALT_VERSIONS.value):
            return ResolutionState.RESOLVED
        if run.resource_id:
            return ResolutionState.TRY_ALT_PATTERNS
        return ResolutionState.BACKOFF_RETRY

    async def _try_alt_patterns(self, run: _Run) -> ResolutionState:
        candidates = alternate_patterns(run.original_url, run.resource_id, self.config.alternate_extensions)
        if await self._try(run, candidates, ResolutionState.TRY_ALT_PATTERNS.value):
            return ResolutionState.RESOLVED
        return ResolutionState.REQUERY

    async def _requery(self, run: _Run) -> ResolutionState:
        if self.platform is None:
            return ResolutionState.BACKOFF_RETRY

        try:
            resource = await self.platform.get_resource(run.resource_id)
        except (PlatformError, TransportError) as e:
            logger.warning("Requery for %s failed: %s", run.resource_id, e)
            return ResolutionState.BACKOFF_RETRY

        fresh_url = resource.delivery_url if resource else None
        if fresh_url and await self._try(run, [fresh_url], ResolutionState.REQUERY.value, dedupe=False):
            return ResolutionState.RESOLVED
        return ResolutionState.BACKOFF_RETRY

    async def _backoff_retry(self, run: _Run) -> ResolutionState:
        for attempt in range(1, run.max_retries + 1):
            delay = self.config.backoff_base ** attempt
            logger.info("Retry %d/%d for %s in %.0fs", attempt, run.max_retries, run.original_url, delay)
            await self._sleep(delay)
            if await self._try(run, [run.original_url], ResolutionState.BACKOFF_RETRY.value, dedupe=False):
                return ResolutionState.RESOLVED
        return ResolutionState.FAILED
