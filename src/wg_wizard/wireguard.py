# src/wg_wizard/wireguard.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Optional

from .config import PERSISTENT_KEEPALIVE
from .models import GlobalState, Peer
from .registry import PeerRegistry


# ---------- Vues passées au rendu ----------

@dataclass
class ServerPeerView:
    name: str
    public_key: str
    preshared_key: str
    allowed_ips: str


@dataclass
class ServerView:
    address: str
    private_key: str
    listen_port: int
    post_up: Optional[str] = None
    post_down: Optional[str] = None
    peers: List[ServerPeerView] = field(default_factory=list)


@dataclass
class PeerView:
    address: str
    private_key: str
    listen_port: int
    server_public_key: str
    preshared_key: str
    allowed_ips: str
    endpoint: str
    dns: Optional[str] = None
    keepalive: Optional[int] = PERSISTENT_KEEPALIVE


def server_view(state: GlobalState, registry: PeerRegistry) -> ServerView:
    s = state.server
    return ServerView(
        address=registry.server_cidr,
        private_key=registry.server_keypair().private_b64,
        listen_port=s.listen_port,
        post_up=s.post_up,
        post_down=s.post_down,
        peers=[
            ServerPeerView(
                name=p.name,
                public_key=p.public_key,
                preshared_key=p.preshared_key,
                allowed_ips=f"{p.address}/32",
            )
            for p in registry
        ],
    )


def peer_view(state: GlobalState, registry: PeerRegistry, peer: Peer) -> PeerView:
    s = state.server
    return PeerView(
        address=f"{peer.address}/32",
        private_key=registry.peer_keypair(peer).private_b64,
        listen_port=s.listen_port,
        server_public_key=registry.server_keypair().public_b64,
        preshared_key=peer.preshared_key,
        allowed_ips=peer.allowed_ips or s.allowed_ips,
        endpoint=s.endpoint,
        dns=peer.dns if peer.dns is not None else s.dns,
    )


# ---------- Rendu des configs ----------

def render_server_conf(view: ServerView) -> str:
    lines = [
        "[Interface]",
        f"Address = {view.address}",
        f"ListenPort = {view.listen_port}",
        f"PrivateKey = {view.private_key}",
    ]
    if view.post_up:
        lines.append(f"PostUp = {view.post_up}")
    if view.post_down:
        lines.append(f"PostDown = {view.post_down}")
    lines.append("")  # blank line

    for p in view.peers:
        lines.append("[Peer]")
        lines.append(f"# {p.name}")
        lines.append(f"PublicKey = {p.public_key}")
        lines.append(f"PresharedKey = {p.preshared_key}")
        lines.append(f"AllowedIPs = {p.allowed_ips}")
        lines.append("")  # blank

    return "\n".join(lines).strip() + "\n"


def render_client_conf(view: PeerView) -> str:
    lines = [
        "[Interface]",
        f"Address = {view.address}",
        f"ListenPort = {view.listen_port}",
        f"PrivateKey = {view.private_key}",
    ]

    if view.dns:
        lines.append(f"DNS = {view.dns}")

    lines += [
        "",
        "[Peer]",
        f"PublicKey = {view.server_public_key}",
        f"PresharedKey = {view.preshared_key}",
        f"AllowedIPs = {view.allowed_ips}",
        f"Endpoint = {view.endpoint}",
    ]

    # keepalive pour le roaming (téléphones derrière NAT)
    if view.keepalive:
        lines.append(f"PersistentKeepalive = {view.keepalive}")

    return "\n".join(lines).strip() + "\n"
