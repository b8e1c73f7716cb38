"""Fluent service-call builder.

Example:
    await client.action("light", "turn_on").entities("light.kitchen").data(brightness=255).execute()
    await client.actions.switch.toggle().areas("garage").execute()
"""

from __future__ import annotations

from typing import Any, Protocol

from hassws.models import ServiceTarget


class ServiceCaller(Protocol):
    async def call_service(
        self,
        domain: str,
        service: str,
        service_data: dict[str, Any] | None = None,
        target: ServiceTarget | None = None,
        return_response: bool = False,
    ) -> Any: ...


class ActionBuilder:
    """Accumulates the target and data of one service call."""

    def __init__(self, caller: ServiceCaller, domain: str, service: str) -> None:
        self._caller = caller
        self.domain = domain
        self.service = service
        self.target = ServiceTarget()
        self.service_data: dict[str, Any] = {}
        self.return_response = False

    def entities(self, *entity_ids: str) -> ActionBuilder:
        self.target.entity_id.extend(entity_ids)
        return self

    def devices(self, *device_ids: str) -> ActionBuilder:
        self.target.device_id.extend(device_ids)
        return self

    def areas(self, *area_ids: str) -> ActionBuilder:
        self.target.area_id.extend(area_ids)
        return self

    def floors(self, *floor_ids: str) -> ActionBuilder:
        self.target.floor_id.extend(floor_ids)
        return self

    def labels(self, *label_ids: str) -> ActionBuilder:
        self.target.label_id.extend(label_ids)
        return self

    def data(self, data: dict[str, Any] | None = None, **fields: Any) -> ActionBuilder:
        """Merge service data; later calls override earlier keys."""
        if data:
            self.service_data.update(data)
        self.service_data.update(fields)
        return self

    def with_response(self) -> ActionBuilder:
        self.return_response = True
        return self

    async def execute(self) -> Any:
        """Send the call and return the hub's result payload."""
        return await self._caller.call_service(
            self.domain,
            self.service,
            service_data=self.service_data or None,
            target=None if self.target.is_empty() else self.target,
            return_response=self.return_response,
        )


class DomainActions:
    """Builders for the common services of one domain."""

    def __init__(self, caller: ServiceCaller, domain: str) -> None:
        self._caller = caller
        self.domain = domain

    def service(self, service: str) -> ActionBuilder:
        return ActionBuilder(self._caller, self.domain, service)

    def turn_on(self) -> ActionBuilder:
        return self.service("turn_on")

    def turn_off(self) -> ActionBuilder:
        return self.service("turn_off")

    def toggle(self) -> ActionBuilder:
        return self.service("toggle")


class Actions:
    """Per-domain action builders bound to a client."""

    def __init__(self, caller: ServiceCaller) -> None:
        self._caller = caller
        self.light = DomainActions(caller, "light")
        self.switch = DomainActions(caller, "switch")
        self.climate = DomainActions(caller, "climate")
        self.button = DomainActions(caller, "button")
        self.alarm_control_panel = DomainActions(caller, "alarm_control_panel")

    def domain(self, domain: str) -> DomainActions:
        return DomainActions(self._caller, domain)
