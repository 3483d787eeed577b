from __future__ import annotations

import ipaddress

import pytest

from wg_wizard.errors import (
    AddressInUseError,
    DuplicatePeerError,
    ExhaustedError,
    InvalidPeerName,
    KeyMismatchError,
    NotExcludedError,
    OutOfRangeError,
    PeerNotFoundError,
)
from wg_wizard.ipam import Subnet
from wg_wizard.keys import KeyHierarchy, RootSecret, encode_key
from wg_wizard.models import GlobalState, Peer, ServerState
from wg_wizard.registry import PeerRegistry, rederive_all

ROOT = RootSecret(b"\x42" * 32)


def make_state(cidr: str = "10.8.0.1/24") -> GlobalState:
    return GlobalState(
        network_cidr=cidr,
        server=ServerState(interface="wg0", listen_port=51820, endpoint="vpn.example.com:51820"),
    )


def test_server_takes_declared_host():
    registry = PeerRegistry.from_state(make_state("10.8.0.1/24"), ROOT)
    assert registry.server_address == ipaddress.IPv4Address("10.8.0.1")
    assert registry.server_cidr == "10.8.0.1/24"
    assert registry.add_peer("a").address == "10.8.0.2"


def test_server_address_when_cidr_is_network_address():
    registry = PeerRegistry.from_state(make_state("10.8.0.0/24"), ROOT)
    assert registry.server_cidr == "10.8.0.1/24"
    assert registry.add_peer("a").address == "10.8.0.2"


def test_server_in_middle_of_subnet_is_skipped():
    registry = PeerRegistry.from_state(make_state("10.8.0.3/29"), ROOT)
    addresses = [registry.add_peer(f"p{i}").address for i in range(5)]
    assert addresses == ["10.8.0.1", "10.8.0.2", "10.8.0.4", "10.8.0.5", "10.8.0.6"]
    with pytest.raises(ExhaustedError):
        registry.add_peer("one-too-many")


def test_add_peer_derives_keys_from_id():
    registry = PeerRegistry.from_state(make_state(), ROOT)
    keys = KeyHierarchy(ROOT)
    peer = registry.add_peer("laptop")
    assert peer.id == 0
    assert peer.public_key == keys.peer_keypair(0).public_b64
    assert peer.preshared_key == encode_key(keys.peer_preshared_key(0))
    assert registry.peer_keypair(peer) == keys.peer_keypair(0)
    assert registry.server_keypair() == keys.server_keypair()


def test_add_peer_with_explicit_address():
    registry = PeerRegistry.from_state(make_state(), ROOT)
    peer = registry.add_peer("printer", address="10.8.0.50", dns="9.9.9.9", allowed_ips="10.8.0.0/24")
    assert peer.address == "10.8.0.50"
    assert peer.dns == "9.9.9.9"
    with pytest.raises(AddressInUseError):
        registry.add_peer("other", address="10.8.0.50")
    with pytest.raises(AddressInUseError):
        registry.add_peer("server-clash", address="10.8.0.1")
    with pytest.raises(OutOfRangeError):
        registry.add_peer("outside", address="192.168.0.1")


def test_duplicate_names_rejected():
    registry = PeerRegistry.from_state(make_state(), ROOT)
    registry.add_peer("a")
    with pytest.raises(DuplicatePeerError):
        registry.add_peer("a")
    with pytest.raises(InvalidPeerName):
        registry.add_peer("")


@pytest.mark.parametrize(
    "name",
    ["x\nAllowedIPs = 0.0.0.0/0", "../../escaped", "a/b", "..", ".", "a b", "laptop\n", ""],
)
def test_unsafe_peer_names_rejected(name):
    registry = PeerRegistry.from_state(make_state(), ROOT)
    with pytest.raises(InvalidPeerName):
        registry.add_peer(name)
    # rien n'est consommé : ni id ni adresse
    assert registry.next_peer_id == 0
    assert str(registry.add_peer("ok").address) == "10.8.0.2"


@pytest.mark.parametrize("name", ["laptop", "peer-1", "alice.phone", "A_B"])
def test_safe_peer_names_accepted(name):
    registry = PeerRegistry.from_state(make_state(), ROOT)
    assert registry.add_peer(name).name == name


def test_rehydrate_rejects_unsafe_name():
    state = make_state()
    state.peers = [Peer(0, "../x", "10.8.0.2", "", "")]
    with pytest.raises(InvalidPeerName):
        PeerRegistry.from_state(state, ROOT)


def test_remove_keeps_other_peers_keys_and_never_reuses_ids():
    state = make_state()
    registry = PeerRegistry.from_state(state, ROOT)
    a = registry.add_peer("a")
    b = registry.add_peer("b")
    b_public = b.public_key

    removed = registry.remove_peer(a.id)
    assert removed is a
    c = registry.add_peer("c")
    assert c.id == 2
    assert registry.get(b.id).public_key == b_public
    registry.apply_to(state)

    # nouvelle session : mêmes clés pour b et c
    again = PeerRegistry.from_state(state, ROOT)
    assert [p.name for p in again] == ["b", "c"]
    assert again.find("b").public_key == b_public
    assert again.peer_keypair(again.find("c")) == KeyHierarchy(ROOT).peer_keypair(2)
    assert again.add_peer("d").id == 3


def test_remove_releases_address():
    registry = PeerRegistry.from_state(make_state(), ROOT)
    a = registry.add_peer("a")
    registry.remove_peer(a.id)
    assert not registry.pool.is_excluded(a.address)
    with pytest.raises(NotExcludedError):
        registry.pool.release(a.address)


def test_released_address_reused_in_next_session():
    state = make_state()
    registry = PeerRegistry.from_state(state, ROOT)
    a = registry.add_peer("a")
    registry.add_peer("b")
    registry.remove_peer(a.id)
    registry.apply_to(state)

    again = PeerRegistry.from_state(state, ROOT)
    assert again.add_peer("c").address == a.address


def test_remove_unknown_peer():
    registry = PeerRegistry.from_state(make_state(), ROOT)
    with pytest.raises(PeerNotFoundError):
        registry.remove_peer(7)
    with pytest.raises(KeyError):
        registry.find("ghost")


def test_rehydrate_fills_missing_keys():
    state = make_state()
    state.peers = [Peer(id=5, name="old", address="10.8.0.9", public_key="", preshared_key="")]
    registry = PeerRegistry.from_state(state, ROOT)
    peer = registry.find("old")
    assert peer.public_key == KeyHierarchy(ROOT).peer_keypair(5).public_b64
    assert registry.next_peer_id == 6
    assert registry.pool.is_excluded("10.8.0.9")


def test_rehydrate_detects_wrong_root_secret():
    state = make_state()
    registry = PeerRegistry.from_state(state, ROOT)
    registry.add_peer("a")
    registry.apply_to(state)
    with pytest.raises(KeyMismatchError):
        PeerRegistry.from_state(state, RootSecret(b"\x43" * 32))


@pytest.mark.parametrize(
    "peers, error",
    [
        ([Peer(0, "a", "10.8.0.2", "", ""), Peer(1, "b", "10.8.0.2", "", "")], AddressInUseError),
        ([Peer(0, "a", "10.8.0.1", "", "")], AddressInUseError),
        ([Peer(0, "a", "10.9.0.2", "", "")], OutOfRangeError),
        ([Peer(0, "a", "10.8.0.2", "", ""), Peer(0, "b", "10.8.0.3", "", "")], DuplicatePeerError),
        ([Peer(0, "a", "10.8.0.2", "", ""), Peer(1, "a", "10.8.0.3", "", "")], DuplicatePeerError),
    ],
)
def test_rehydrate_rejects_inconsistent_state(peers, error):
    state = make_state()
    state.peers = peers
    with pytest.raises(error):
        PeerRegistry.from_state(state, ROOT)


def test_persisted_server_private_key_overrides_derivation():
    state = make_state()
    legacy = KeyHierarchy(RootSecret(b"\x01" * 32)).server_keypair()
    state.server.private_key = legacy.private_b64
    registry = PeerRegistry.from_state(state, ROOT)
    assert registry.server_keypair() == legacy


def test_rederive_all_changes_every_key_but_keeps_layout():
    state = make_state()
    registry = PeerRegistry.from_state(state, ROOT)
    registry.add_peer("a")
    registry.add_peer("b")
    registry.apply_to(state)
    before = {p.name: (p.id, p.address, p.public_key) for p in state.peers}

    new_root = RootSecret(b"\x07" * 32)
    rotated = rederive_all(state, new_root)
    after = {p.name: (p.id, p.address, p.public_key) for p in state.peers}

    assert rotated.server_keypair() == KeyHierarchy(new_root).server_keypair()
    for name in before:
        assert before[name][:2] == after[name][:2]
        assert before[name][2] != after[name][2]
    PeerRegistry.from_state(state, new_root)


def test_subnet_reference_kept():
    registry = PeerRegistry.from_state(make_state("10.8.0.1/30"), ROOT)
    assert registry.subnet == Subnet.parse("10.8.0.1/30")
    assert registry.add_peer("only").address == "10.8.0.2"
    with pytest.raises(ExhaustedError):
        registry.add_peer("none-left")
