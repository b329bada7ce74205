from __future__ import annotations

import asyncio
import logging
from typing import Any

from .app_logging import get_logger, log_with_fields
from .errors import CoordinatorUnreachable, MissingIdentity, NetworkUnavailable
from .events import ADDRESS_CHANGED, COORDINATOR_UNREACHABLE, IDENTITY_MISSING, Notifier
from .models import CoordinatorIdentity, IdentityStage
from .remote import HttpFetcher
from .utils import parse_identifier

DOMAIN_NAME_KEY = "name"
DOMAIN_OWNER_PLACES_KEY = "owner_places"


def extract_domain_name(payload: Any) -> str | None:
    """Name from ``domain.name``, else from the first of ``domain.owner_places``."""
    if not isinstance(payload, dict):
        return None
    domain = payload.get("domain")
    if not isinstance(domain, dict):
        return None
    name = domain.get(DOMAIN_NAME_KEY)
    if isinstance(name, str) and name:
        return name
    places = domain.get(DOMAIN_OWNER_PLACES_KEY)
    if isinstance(places, list) and places and isinstance(places[0], dict):
        place_name = places[0].get(DOMAIN_NAME_KEY)
        if isinstance(place_name, str) and place_name:
            return place_name
    return None


class IdentityResolver:
    """Resolves the running coordinator's ID, then its public name.

    Concurrent ``resolve()`` calls share the chain that is already in flight.
    """

    def __init__(
        self,
        http: HttpFetcher,
        coordinator_url: str,
        directory_url: str,
        notifier: Notifier,
        *,
        scheme: str = "hifi",
        initial_delay: float = 1.0,
        retry_delay: float = 1.0,
        max_attempts: int = 5,
        backoff_factor: float = 2.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self.http = http
        self.coordinator_url = coordinator_url.rstrip("/")
        self.directory_url = directory_url.rstrip("/")
        self.notifier = notifier
        self.scheme = scheme
        self.initial_delay = initial_delay
        self.retry_delay = retry_delay
        self.max_attempts = max_attempts
        self.backoff_factor = backoff_factor
        self.logger = logger or get_logger("identity")
        self.identity = CoordinatorIdentity()
        self.stage = IdentityStage.NO_ID
        self._inflight: asyncio.Task[CoordinatorIdentity] | None = None

    @property
    def address(self) -> str:
        return self.identity.address(self.scheme)

    def resolve_soon(self) -> asyncio.Task[CoordinatorIdentity] | None:
        """Start resolving in the background after the initial delay."""
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            log_with_fields(self.logger, logging.WARNING, "identity_not_scheduled", reason="no_event_loop")
            return None
        return self._start(self.initial_delay)

    async def resolve(self) -> CoordinatorIdentity:
        return await self._start(0.0)

    async def cancel(self) -> None:
        task, self._inflight = self._inflight, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def _start(self, delay: float) -> asyncio.Task[CoordinatorIdentity]:
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.get_running_loop().create_task(self._run_chain(delay))
        return self._inflight

    async def _run_chain(self, delay: float) -> CoordinatorIdentity:
        if delay > 0:
            await asyncio.sleep(delay)
        self.notifier.emit(ADDRESS_CHANGED)
        try:
            domain_id = await self._request_id()
        except CoordinatorUnreachable as exc:
            self.stage = IdentityStage.NO_ID
            log_with_fields(self.logger, logging.WARNING, "coordinator_unreachable", error=str(exc))
            self.notifier.emit(COORDINATOR_UNREACHABLE, error=str(exc))
            return self.identity
        except MissingIdentity as exc:
            self.stage = IdentityStage.ID_KNOWN
            self.identity.domain_id = None
            log_with_fields(self.logger, logging.WARNING, "identity_missing", error=str(exc))
            self.notifier.emit(IDENTITY_MISSING)
            return self.identity

        self.identity.domain_id = domain_id
        self.stage = IdentityStage.ID_KNOWN
        log_with_fields(self.logger, logging.INFO, "identity_known", domain_id=domain_id)
        await self._request_name(domain_id)
        return self.identity

    async def _request_id(self) -> str:
        url = f"{self.coordinator_url}/id"
        self.stage = IdentityStage.ID_REQUESTED
        wait = self.retry_delay
        last_error = "no attempt made"
        for attempt in range(1, self.max_attempts + 1):
            log_with_fields(self.logger, logging.DEBUG, "identity_requested", url=url, attempt=attempt)
            try:
                reply = await self.http.get(url)
            except NetworkUnavailable as exc:
                last_error = str(exc)
            else:
                if reply.ok:
                    domain_id = parse_identifier(reply.text)
                    if domain_id is None:
                        raise MissingIdentity(f"coordinator returned an unusable id: {reply.text.strip()!r}")
                    return domain_id
                last_error = f"{url} answered {reply.status_code}"
            if attempt < self.max_attempts:
                await asyncio.sleep(wait)
                wait *= self.backoff_factor
        raise CoordinatorUnreachable(f"{last_error} after {self.max_attempts} attempts")

    async def _request_name(self, domain_id: str) -> None:
        url = f"{self.directory_url}/domains/{domain_id}"
        self.stage = IdentityStage.NAME_REQUESTED
        name: str | None = None
        try:
            reply = await self.http.get(url)
            if reply.ok:
                name = extract_domain_name(reply.json())
        except (NetworkUnavailable, ValueError) as exc:
            log_with_fields(self.logger, logging.INFO, "domain_lookup_failed", url=url, error=str(exc))

        if name is None:
            self.stage = IdentityStage.ID_KNOWN
            return
        self.identity.name = name
        self.stage = IdentityStage.NAME_KNOWN
        log_with_fields(self.logger, logging.INFO, "identity_resolved", name=name, address=self.address)
        self.notifier.emit(ADDRESS_CHANGED)
