
# src/wg_wizard/models.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class Endpoint:
    host: str
    port: int

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass
class Peer:
    id: int                    # identifiant permanent, jamais réutilisé
    name: str
    address: str               # ex "10.8.0.2"
    public_key: str            # base64
    preshared_key: str         # base64
    allowed_ips: Optional[str] = None  # surcharge de ServerState.allowed_ips
    dns: Optional[str] = None          # surcharge de ServerState.dns


@dataclass
class ServerState:
    interface: str             # ex: "wg0"
    listen_port: int           # ex: 51820
    endpoint: str              # IP publique:port pour les clients, ex "1.2.3.4:51820"
    dns: Optional[str] = None  # DNS poussé aux clients
    allowed_ips: str = "0.0.0.0/0"
    post_up: Optional[str] = None
    post_down: Optional[str] = None
    private_key: Optional[str] = None  # clé migrée d'une ancienne installation, sinon dérivée


@dataclass
class GlobalState:
    network_cidr: str                  # ex: "10.8.0.1/24" (l'hôte déclaré est le serveur)
    server: ServerState
    peers: List[Peer] = field(default_factory=list)
    next_peer_id: int = 0
