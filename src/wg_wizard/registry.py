# src/wg_wizard/registry.py
from __future__ import annotations

import ipaddress
import logging
import re
from typing import Dict, Iterable, Iterator, List, Optional

from .errors import (
    DuplicatePeerError,
    InvalidPeerName,
    InvalidStateError,
    KeyMismatchError,
    PeerNotFoundError,
)
from .ipam import AddressPool, AddressLike, Subnet, format_address, parse_address
from .keys import KeyHierarchy, KeyPair, RootSecret, decode_key, encode_key
from .models import GlobalState, Peer

logger = logging.getLogger(__name__)

# le nom sert de nom de fichier et de commentaire dans wg0.conf
PEER_NAME_RE = re.compile(r"[A-Za-z0-9._-]+")


def validate_peer_name(name: str) -> str:
    if not isinstance(name, str) or not PEER_NAME_RE.fullmatch(name) or name in (".", ".."):
        raise InvalidPeerName(
            f"Invalid peer name {name!r}: use letters, digits, '.', '_' or '-'"
        )
    return name


class PeerRegistry:
    """
    Peers d'une session de provisioning.

    Chaque peer garde un identifiant permanent (compteur `next_peer_id`,
    jamais décrémenté) : ses clés sont dérivées de cet identifiant et restent
    donc identiques d'une exécution à l'autre, même après suppression d'un
    peer plus ancien.
    """

    def __init__(
        self,
        subnet: Subnet,
        keys: KeyHierarchy,
        next_peer_id: int = 0,
        server_private_key: Optional[bytes] = None,
    ):
        self.subnet = subnet
        self.keys = keys
        self.pool = AddressPool(subnet)
        self._peers: Dict[int, Peer] = {}
        self._next_id = next_peer_id
        self._server_keys = (
            KeyPair.from_private(server_private_key)
            if server_private_key is not None
            else keys.server_keypair()
        )
        self.server_address = self._reserve_server_address()

    @classmethod
    def from_state(cls, state: GlobalState, root: RootSecret) -> "PeerRegistry":
        subnet = Subnet.parse(state.network_cidr)
        server_private_key = None
        if state.server.private_key:
            try:
                server_private_key = decode_key(state.server.private_key)
            except ValueError as exc:
                raise InvalidStateError(f"Invalid server private key: {exc}") from exc
        registry = cls(
            subnet,
            KeyHierarchy(root),
            next_peer_id=state.next_peer_id,
            server_private_key=server_private_key,
        )
        registry.rehydrate(state.peers)
        return registry

    def apply_to(self, state: GlobalState) -> None:
        state.peers = self.peers
        state.next_peer_id = self._next_id

    def _reserve_server_address(self) -> ipaddress.IPv4Address:
        # "10.8.0.0/24" : l'hôte déclaré n'est pas utilisable, le serveur prend la première IP libre
        if self.subnet.contains(self.subnet.address):
            return self.pool.exclude(self.subnet.address)
        return self.pool.allocate()

    # ---------- Lecture ----------

    @property
    def peers(self) -> List[Peer]:
        return list(self._peers.values())

    @property
    def next_peer_id(self) -> int:
        return self._next_id

    @property
    def server_cidr(self) -> str:
        return f"{self.server_address}/{self.subnet.prefix}"

    def __iter__(self) -> Iterator[Peer]:
        return iter(self.peers)

    def __len__(self) -> int:
        return len(self._peers)

    def get(self, peer_id: int) -> Peer:
        try:
            return self._peers[peer_id]
        except KeyError:
            raise PeerNotFoundError(f"Peer #{peer_id} does not exist") from None

    def find(self, name: str) -> Peer:
        for p in self._peers.values():
            if p.name == name:
                return p
        raise PeerNotFoundError(f"Peer '{name}' does not exist")

    def _has_name(self, name: str) -> bool:
        return any(p.name == name for p in self._peers.values())

    # ---------- Clés ----------

    def server_keypair(self) -> KeyPair:
        return self._server_keys

    def peer_keypair(self, peer: Peer) -> KeyPair:
        return self.keys.peer_keypair(peer.id)

    def peer_preshared_key(self, peer: Peer) -> str:
        return encode_key(self.keys.peer_preshared_key(peer.id))

    # ---------- Mutations ----------

    def rehydrate(self, peers: Iterable[Peer]) -> None:
        """Load already-provisioned peers: reserve their addresses and check their keys.

        Peers persisted without keys get them filled in from the derivation.
        """
        for peer in peers:
            validate_peer_name(peer.name)
            if peer.id in self._peers:
                raise DuplicatePeerError(f"Duplicate peer id {peer.id}")
            if self._has_name(peer.name):
                raise DuplicatePeerError(f"Peer '{peer.name}' already exists")
            if peer.id < 0:
                raise InvalidStateError(f"Negative peer id {peer.id}")

            public_key = self.peer_keypair(peer).public_b64
            preshared_key = self.peer_preshared_key(peer)
            if peer.public_key and peer.public_key != public_key:
                raise KeyMismatchError(
                    f"Public key of peer '{peer.name}' does not match the root secret"
                )
            if peer.preshared_key and peer.preshared_key != preshared_key:
                raise KeyMismatchError(
                    f"Preshared key of peer '{peer.name}' does not match the root secret"
                )

            self.pool.exclude(peer.address)
            peer.address = format_address(parse_address(peer.address))
            peer.public_key = public_key
            peer.preshared_key = preshared_key
            self._peers[peer.id] = peer
            self._next_id = max(self._next_id, peer.id + 1)
            logger.debug("rehydrated peer #%d %s at %s", peer.id, peer.name, peer.address)

    def add_peer(
        self,
        name: str,
        address: Optional[AddressLike] = None,
        allowed_ips: Optional[str] = None,
        dns: Optional[str] = None,
    ) -> Peer:
        validate_peer_name(name)
        if self._has_name(name):
            raise DuplicatePeerError(f"Peer '{name}' already exists")

        if address is None:
            ip = self.pool.allocate()
        else:
            ip = self.pool.exclude(address)

        peer_id = self._next_id
        self._next_id += 1
        peer = Peer(
            id=peer_id,
            name=name,
            address=str(ip),
            public_key="",
            preshared_key="",
            allowed_ips=allowed_ips,
            dns=dns,
        )
        peer.public_key = self.peer_keypair(peer).public_b64
        peer.preshared_key = self.peer_preshared_key(peer)

        self._peers[peer_id] = peer
        logger.info("added peer #%d %s at %s", peer_id, name, ip)
        return peer

    def remove_peer(self, peer_id: int) -> Peer:
        peer = self.get(peer_id)
        self.pool.release(peer.address)
        del self._peers[peer_id]
        logger.info("removed peer #%d %s, released %s", peer_id, peer.name, peer.address)
        return peer


def rederive_all(state: GlobalState, root: RootSecret) -> PeerRegistry:
    """Rebuild every key of `state` from a new root secret.

    Every previously issued peer configuration stops working.
    Ids, names and addresses are kept.
    """
    for p in state.peers:
        p.public_key = ""
        p.preshared_key = ""
    state.server.private_key = None
    registry = PeerRegistry.from_state(state, root)
    registry.apply_to(state)
    logger.warning("root secret rotated: %d peer key(s) re-derived", len(registry))
    return registry
