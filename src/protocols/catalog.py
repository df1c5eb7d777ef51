"""Static catalog of named safety protocols."""

from functools import lru_cache
from typing import Mapping, Optional, Union

from src.errors import UnknownProtocol
from src.schema import Protocol, ProtocolName

EMERGENCY_PROTOCOLS: dict[ProtocolName, str] = {
    ProtocolName.STRUCTURAL: """PROTOCOL-ALPHA-9: STRUCTURAL FAILURE
1. Establish 500m exclusion zone.
2. Cut gas/power to grid sector.
3. Deploy seismic sensors before personnel entry.
4. Priority: Stabilization over rapid extraction.""",
    ProtocolName.CHEMICAL: """PROTOCOL-HAZMAT-4: TOXIC RELEASE
1. Determine wind vector immediately.
2. Issue shelter-in-place order for downwind sectors.
3. Deploy autonomous sniffers (no humans in red zone).
4. Prepare decontamination showers at perimeter.""",
    ProtocolName.TRAFFIC: """PROTOCOL-TRAFFIC-1: HIGHWAY OBSTRUCTION
1. Re-route autonomous traffic grid.
2. Deploy drone airspace clearing.
3. Dispatch rapid medical response unit.
4. Clear wreckage within 45 mins to restore flow.""",
    ProtocolName.DEFAULT: """PROTOCOL-STD-0: GENERAL RESPONSE
1. Assess scene safety.
2. Triage casualties.
3. Notify central command.
4. Await further instructions.""",
}


class ProtocolCatalog:
    """Read-only lookup of safety protocols by name.

    Protocols are kept in ``ProtocolName`` declaration order, which is also the
    order they are serialized in exported workflows.
    """

    def __init__(self, protocols: Optional[Mapping[ProtocolName, str]] = None):
        source = EMERGENCY_PROTOCOLS if protocols is None else protocols
        self._protocols: dict[ProtocolName, Protocol] = {}
        for name in ProtocolName:
            if name in source:
                self._protocols[name] = Protocol(name=name, body=source[name])

    def lookup(self, name: Union[ProtocolName, str]) -> Protocol:
        """Get a protocol by name.

        Raises:
            UnknownProtocol: if the name is not part of this catalog.
        """
        try:
            key = ProtocolName(name)
        except ValueError:
            raise UnknownProtocol(name) from None
        protocol = self._protocols.get(key)
        if protocol is None:
            raise UnknownProtocol(key.value)
        return protocol

    def all(self) -> list[Protocol]:
        return list(self._protocols.values())

    def as_dict(self) -> dict[str, str]:
        """``{name: body}`` mapping, as embedded in exported workflows."""
        return {p.name.value: p.body for p in self._protocols.values()}

    def __contains__(self, name) -> bool:
        try:
            self.lookup(name)
        except UnknownProtocol:
            return False
        return True

    def __len__(self) -> int:
        return len(self._protocols)


@lru_cache
def get_catalog() -> ProtocolCatalog:
    """Get the process-wide protocol catalog."""
    return ProtocolCatalog()
