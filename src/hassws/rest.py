"""Home Assistant REST API client.

Thin async wrapper over Home Assistant's REST API. Handles:
- Authentication via long-lived access token
- API availability check
- Config and state retrieval
- Service calls and event firing
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from hassws.config import ClientSettings
from hassws.errors import RestError
from hassws.models import EntitySnapshot, ServiceTarget

logger = structlog.get_logger(__name__)


class RestClient:
    """Async client for Home Assistant REST API.

    Example:
        async with RestClient(settings) as rest:
            if await rest.check_api():
                lights = [s for s in await rest.get_states() if s.domain == "light"]
                await rest.call_service("light", "turn_on", {"brightness": 255},
                                        target=ServiceTarget(entity_id=["light.kitchen"]))
    """

    def __init__(
        self,
        settings: ClientSettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the REST client.

        Args:
            settings: Client settings (host, port, token, secure, request_timeout)
            transport: Optional httpx transport, mainly for tests
        """
        self._base_url = settings.http_url
        self._token = settings.token
        self._timeout = settings.request_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def base_url(self) -> str:
        return self._base_url

    async def __aenter__(self) -> RestClient:
        await self.open()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def open(self) -> httpx.AsyncClient:
        """Create the underlying httpx client if needed and return it."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers={
                    "Authorization": f"Bearer {self._token}",
                    "Content-Type": "application/json",
                },
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, json: Any = None) -> httpx.Response:
        client = await self.open()
        try:
            response = await client.request(method, path, json=json)
        except httpx.RequestError as e:
            logger.error("REST request failed", method=method, path=path, error=str(e))
            raise RestError(0, f"connection error: {e}") from e

        return response

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if response.is_success:
            return
        logger.error(
            "REST request returned error status",
            path=response.request.url.path,
            status=response.status_code,
        )
        raise RestError(response.status_code, response.text)

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            logger.error(
                "REST response is not JSON",
                path=response.request.url.path,
                status=response.status_code,
            )
            raise RestError(response.status_code, f"invalid JSON body: {e}") from e

    async def _get(self, path: str) -> Any:
        response = await self._request("GET", path)
        self._raise_for_status(response)
        return self._json(response)

    async def _post(self, path: str, payload: Any = None) -> Any:
        response = await self._request("POST", path, json=payload)
        self._raise_for_status(response)
        return self._json(response) if response.content else None

    async def check_api(self) -> bool:
        """Check if Home Assistant's API is reachable.

        Returns:
            True if the API answered its running message.
        """
        data = await self._get("")
        return isinstance(data, dict) and "message" in data

    async def get_config(self) -> dict[str, Any]:
        return await self._get("config")

    async def get_states(self) -> list[EntitySnapshot]:
        return [EntitySnapshot.from_dict(item) for item in await self._get("states")]

    async def get_state(self, entity_id: str) -> EntitySnapshot | None:
        """Get the current state of an entity.

        Returns:
            EntitySnapshot or None if the entity does not exist.
        """
        response = await self._request("GET", f"states/{entity_id}")
        if response.status_code == 404:
            return None
        self._raise_for_status(response)
        return EntitySnapshot.from_dict(self._json(response))

    async def call_service(
        self,
        domain: str,
        service: str,
        service_data: dict[str, Any] | None = None,
        target: ServiceTarget | None = None,
    ) -> list[EntitySnapshot]:
        """Call a service.

        The REST API expects target keys at the root level of the body,
        merged with the service data.

        Returns:
            Snapshots of the states changed by the call.
        """
        data: dict[str, Any] = dict(service_data or {})
        if target is not None:
            data.update(target.to_dict())

        changed = await self._post(f"services/{domain}/{service}", data)
        logger.info(
            "Service call successful", domain=domain, service=service, changed=len(changed or [])
        )
        return [EntitySnapshot.from_dict(item) for item in changed or []]

    async def fire_event(self, event_type: str, event_data: dict[str, Any] | None = None) -> str:
        """Fire an event on the hub bus; returns the hub's confirmation message."""
        data = await self._post(f"events/{event_type}", event_data or {})
        return (data or {}).get("message", "")
