# src/wg_wizard/init_server.py

from __future__ import annotations
import logging
from typing import Optional, Tuple

from . import config
from .artifacts import ArtifactPaths
from .errors import ParseError, StateExistsError
from .ipam import Subnet, parse_endpoint
from .keys import RootSecret
from .models import GlobalState, ServerState
from .registry import PeerRegistry

logger = logging.getLogger(__name__)


def init_server(
    paths: ArtifactPaths,
    network_cidr: str = config.DEFAULT_SUBNET,
    listen_port: int = config.DEFAULT_LISTEN_PORT,
    endpoint: str = config.DEFAULT_ENDPOINT,
    interface: str = config.DEFAULT_INTERFACE,
    dns: Optional[str] = config.DEFAULT_DNS,
    allowed_ips: str = config.DEFAULT_ALLOWED_IPS,
    post_up: Optional[str] = None,
    post_down: Optional[str] = None,
    peer_count: int = 0,
    force: bool = False,
) -> Tuple[GlobalState, PeerRegistry]:
    if paths.has_state() and not force:
        raise StateExistsError(
            f"A network already exists in {paths.config_dir}; "
            "re-initialising generates a new root secret and invalidates every peer"
        )

    # validation avant toute écriture
    Subnet.parse(network_cidr)
    if not 1 <= listen_port <= 65535:
        raise ParseError(f"Listen port must be in [1, 65535], got {listen_port}")
    endpoint = str(parse_endpoint(endpoint))

    root = RootSecret.generate()

    server = ServerState(
        interface=interface,
        listen_port=listen_port,
        endpoint=endpoint,
        dns=dns,
        allowed_ips=allowed_ips,
        post_up=post_up,
        post_down=post_down,
    )
    state = GlobalState(network_cidr=network_cidr, server=server)

    registry = PeerRegistry.from_state(state, root)
    for i in range(peer_count):
        registry.add_peer(f"peer{i + 1}")
    registry.apply_to(state)

    paths.write_network(root, state)
    logger.info("network %s initialised with %d peer(s)", network_cidr, peer_count)
    return state, registry
