from __future__ import annotations

import json

import pytest

from wg_wizard.errors import InvalidStateError, StateNotFoundError
from wg_wizard.models import GlobalState, Peer, ServerState
from wg_wizard.state import dict_to_state, dump_state, load_state, state_to_dict


def sample_state() -> GlobalState:
    return GlobalState(
        network_cidr="10.8.0.1/24",
        server=ServerState(
            interface="wg0",
            listen_port=51820,
            endpoint="vpn.example.com:51820",
            dns="1.1.1.1",
            post_up="iptables -A FORWARD -i %i -j ACCEPT",
        ),
        peers=[
            Peer(id=0, name="peer1", address="10.8.0.2", public_key="pub", preshared_key="psk"),
            Peer(id=3, name="phone", address="10.8.0.5", public_key="pub3", preshared_key="psk3",
                 dns="9.9.9.9"),
        ],
        next_peer_id=4,
    )


def test_round_trip(tmp_path):
    state = sample_state()
    path = tmp_path / "server.json"
    path.write_text(dump_state(state), encoding="utf-8")
    assert load_state(path) == state


def test_root_secret_never_in_state():
    data = state_to_dict(sample_state())
    assert "root_secret" not in data
    assert set(data) == {"network_cidr", "next_peer_id", "server", "peers"}
    assert data["peers"][1]["id"] == 3


def test_optional_fields_default():
    data = {
        "network_cidr": "10.8.0.1/24",
        "server": {"interface": "wg0", "listen_port": 51820, "endpoint": "h:1"},
        "peers": [{"id": 0, "name": "a", "address": "10.8.0.2"}],
    }
    state = dict_to_state(data)
    assert state.next_peer_id == 0
    assert state.server.allowed_ips == "0.0.0.0/0"
    assert state.peers[0].public_key == ""


@pytest.mark.parametrize(
    "mutate",
    [
        lambda d: d.pop("network_cidr"),
        lambda d: d["server"].pop("listen_port"),
        lambda d: d["server"].update(listen_port="51820"),
        lambda d: d["server"].update(listen_port=True),
        lambda d: d["peers"][0].pop("id"),
        lambda d: d["peers"][0].update(address=None),
        lambda d: d.update(next_peer_id="4"),
        lambda d: d["peers"].append("peer2"),
        lambda d: d.update(peers=5),
        lambda d: d.update(peers={"0": {}}),
        lambda d: d["server"].update(private_key=123),
        lambda d: d["server"].update(dns=["1.1.1.1"]),
        lambda d: d["server"].update(allowed_ips=0),
        lambda d: d["server"].update(post_up=True),
        lambda d: d["server"].update(post_down={}),
        lambda d: d["peers"][0].update(public_key=1),
        lambda d: d["peers"][0].update(preshared_key=b"psk"),
        lambda d: d["peers"][0].update(allowed_ips=["0.0.0.0/0"]),
        lambda d: d["peers"][1].update(dns=9),
    ],
)
def test_invalid_state(mutate):
    data = state_to_dict(sample_state())
    mutate(data)
    with pytest.raises(InvalidStateError):
        dict_to_state(data)


def test_load_missing_file(tmp_path):
    with pytest.raises(StateNotFoundError):
        load_state(tmp_path / "missing.json")


def test_load_corrupt_json(tmp_path):
    path = tmp_path / "server.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(InvalidStateError):
        load_state(path)


def test_dump_is_plain_json():
    assert json.loads(dump_state(sample_state()))["server"]["post_up"].startswith("iptables")


def test_null_optional_fields_accepted():
    data = state_to_dict(sample_state())
    data["peers"] = None
    data["server"]["dns"] = None
    state = dict_to_state(data)
    assert state.peers == []
    assert state.server.dns is None
