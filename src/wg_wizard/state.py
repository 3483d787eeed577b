# src/wg_wizard/state.py
from __future__ import annotations
import json
from pathlib import Path
from typing import Any, Dict

from .errors import InvalidStateError, StateNotFoundError
from .models import GlobalState, ServerState, Peer


def state_to_dict(state: GlobalState) -> dict:
    return {
        "network_cidr": state.network_cidr,
        "next_peer_id": state.next_peer_id,
        "server": {
            "interface": state.server.interface,
            "listen_port": state.server.listen_port,
            "endpoint": state.server.endpoint,
            "dns": state.server.dns,
            "allowed_ips": state.server.allowed_ips,
            "post_up": state.server.post_up,
            "post_down": state.server.post_down,
            "private_key": state.server.private_key,
        },
        "peers": [
            {
                "id": p.id,
                "name": p.name,
                "address": p.address,
                "public_key": p.public_key,
                "preshared_key": p.preshared_key,
                "allowed_ips": p.allowed_ips,
                "dns": p.dns,
            }
            for p in state.peers
        ],
    }


def _require(data: Dict[str, Any], key: str, kind: type, where: str) -> Any:
    if key not in data:
        raise InvalidStateError(f"Missing '{key}' in {where}")
    value = data[key]
    # bool est un int en Python
    if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
        raise InvalidStateError(f"'{key}' in {where} must be {kind.__name__}")
    return value


def _optional(data: Dict[str, Any], key: str, kind: type, where: str) -> Any:
    # absent et null sont équivalents
    if data.get(key) is None:
        return None
    return _require(data, key, kind, where)


def dict_to_state(data: dict) -> GlobalState:
    if not isinstance(data, dict):
        raise InvalidStateError("State must be a JSON object")

    server_data = _require(data, "server", dict, "state")
    server = ServerState(
        interface=_require(server_data, "interface", str, "server"),
        listen_port=_require(server_data, "listen_port", int, "server"),
        endpoint=_require(server_data, "endpoint", str, "server"),
        dns=_optional(server_data, "dns", str, "server"),
        allowed_ips=_optional(server_data, "allowed_ips", str, "server") or "0.0.0.0/0",
        post_up=_optional(server_data, "post_up", str, "server"),
        post_down=_optional(server_data, "post_down", str, "server"),
        private_key=_optional(server_data, "private_key", str, "server"),
    )

    peers = []
    for p in _optional(data, "peers", list, "state") or []:
        if not isinstance(p, dict):
            raise InvalidStateError("Each peer must be a JSON object")
        peers.append(Peer(
            id=_require(p, "id", int, "peer"),
            name=_require(p, "name", str, "peer"),
            address=_require(p, "address", str, "peer"),
            public_key=_optional(p, "public_key", str, "peer") or "",
            preshared_key=_optional(p, "preshared_key", str, "peer") or "",
            allowed_ips=_optional(p, "allowed_ips", str, "peer"),
            dns=_optional(p, "dns", str, "peer"),
        ))

    next_peer_id = _require(data, "next_peer_id", int, "state") if "next_peer_id" in data else 0

    return GlobalState(
        network_cidr=_require(data, "network_cidr", str, "state"),
        server=server,
        peers=peers,
        next_peer_id=next_peer_id,
    )


def load_state(path: Path) -> GlobalState:
    if not path.exists():
        raise StateNotFoundError(f"State file not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as exc:
            raise InvalidStateError(f"State file is not valid JSON: {path}") from exc
    return dict_to_state(data)


def dump_state(state: GlobalState) -> str:
    return json.dumps(state_to_dict(state), indent=2)
