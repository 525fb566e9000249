from __future__ import annotations

import ipaddress
import re
from typing import Iterable, List, Literal, Optional, Tuple

from server.src.core.logging import get_logger

from ..schemas import Peer, PeerRecord

logger = get_logger(__name__)

# Nodes report every endpoint in bracket notation, IPv4 included: "[::ffff:10.0.0.1]:16179".
ENDPOINT_PATTERN = re.compile(r"\[([A-Za-z0-9:.]*)\]:([0-9]*)")


def federation_key(remote_endpoint: str) -> Optional[str]:
    """Return the "address:port" string used to look a peer up in the federation list.

    IPv4-mapped IPv6 addresses are reduced to their IPv4 form. Returns None
    when the endpoint does not match the bracket pattern or the address is
    not an IP literal.
    """
    match = ENDPOINT_PATTERN.search(remote_endpoint or "")
    if match is None:
        return None
    address_text, port = match.group(1), match.group(2)
    if not port:
        return None
    try:
        address = ipaddress.ip_address(address_text)
    except ValueError:
        return None
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        address = address.ipv4_mapped
    return f"{address}:{port}"


class PeerClassifier:
    """Split raw peer records into ordinary peers and federation members.

    Results accumulate on the instance, so a caller that catches a failure
    halfway through a collection still sees every peer classified before it.
    """

    def __init__(self, federation_endpoints: str) -> None:
        self._federation_endpoints = federation_endpoints or ""
        self.peers: List[Peer] = []
        self.federation_members: List[Peer] = []
        self.dropped = 0

    def classify(self, outbound: Iterable[PeerRecord], inbound: Iterable[PeerRecord]) -> None:
        self._classify_direction(outbound, "outbound")
        self._classify_direction(inbound, "inbound")

    def _classify_direction(
        self, records: Iterable[PeerRecord], direction: Literal["inbound", "outbound"]
    ) -> None:
        for record in records:
            key = federation_key(record.remote_socket_endpoint)
            if key is None:
                self.dropped += 1
                logger.warning(
                    "Dropping %s peer with unparseable endpoint '%s'",
                    direction,
                    record.remote_socket_endpoint,
                )
                continue

            peer = Peer(
                endpoint=record.remote_socket_endpoint,
                direction=direction,
                height=record.tip_height,
                version=record.version,
            )
            if self._federation_endpoints and key in self._federation_endpoints:
                self.federation_members.append(peer)
            else:
                self.peers.append(peer)

    def result(self) -> Tuple[Tuple[Peer, ...], Tuple[Peer, ...]]:
        return tuple(self.peers), tuple(self.federation_members)


def classify_peers(
    outbound: Iterable[PeerRecord],
    inbound: Iterable[PeerRecord],
    federation_endpoints: str,
) -> Tuple[Tuple[Peer, ...], Tuple[Peer, ...]]:
    """Return (peers, federation_members) for the given raw peer lists."""
    classifier = PeerClassifier(federation_endpoints)
    classifier.classify(outbound, inbound)
    return classifier.result()
