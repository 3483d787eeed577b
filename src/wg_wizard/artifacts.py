# src/wg_wizard/artifacts.py
from __future__ import annotations

import io
import logging
import os
import shutil
from pathlib import Path
from typing import Union

import qrcode
import qrcode.constants

from .errors import InvalidRootSecret
from .keys import RootSecret
from .models import GlobalState
from .state import dump_state, load_state

logger = logging.getLogger(__name__)

DIR_MODE = 0o700
FILE_MODE = 0o600


def _write_private(path: Path, data: Union[str, bytes]) -> None:
    if isinstance(data, str):
        data = data.encode("utf-8")
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, FILE_MODE)
    with os.fdopen(fd, "wb") as f:
        f.write(data)
    # le fichier existait peut-être déjà avec d'autres droits
    path.chmod(FILE_MODE)


def _stage_private(path: Path, data: Union[str, bytes]) -> Path:
    tmp = path.with_name(f".{path.name}.tmp")
    _write_private(tmp, data)
    return tmp


class ArtifactPaths:
    """
    <base>/config/
        wg0.conf
        peers/<name>.conf
        qr/<name>.png
        state/server.json
        state/root.key
    """

    def __init__(self, base_dir: Union[str, Path], interface: str = "wg0"):
        self.base_dir = Path(base_dir)
        self.config_dir = self.base_dir / "config"
        self.peers_dir = self.config_dir / "peers"
        self.qr_dir = self.config_dir / "qr"
        self.state_dir = self.config_dir / "state"
        self.state_path = self.state_dir / "server.json"
        self.root_key_path = self.state_dir / "root.key"
        self.interface = interface

    @property
    def server_config_path(self) -> Path:
        return self.config_dir / f"{self.interface}.conf"

    def peer_config_path(self, peer_name: str) -> Path:
        return self.peers_dir / f"{peer_name}.conf"

    def peer_qr_path(self, peer_name: str) -> Path:
        return self.qr_dir / f"{peer_name}.png"

    # ---------- Dossiers ----------

    def ensure_dirs(self) -> None:
        for d in (self.config_dir, self.state_dir, self.peers_dir, self.qr_dir):
            d.mkdir(parents=True, exist_ok=True, mode=DIR_MODE)
            d.chmod(DIR_MODE)

    def reset_rendered(self) -> None:
        """Drop every rendered peer file (state and root key are kept)."""
        for d in (self.peers_dir, self.qr_dir):
            if d.exists():
                shutil.rmtree(d)
        self.ensure_dirs()

    # ---------- Configs ----------

    def write_server_config(self, content: str) -> Path:
        self.ensure_dirs()
        _write_private(self.server_config_path, content)
        return self.server_config_path

    def write_peer_config(self, peer_name: str, content: str) -> Path:
        self.ensure_dirs()
        path = self.peer_config_path(peer_name)
        _write_private(path, content)
        return path

    def write_peer_qr(self, peer_name: str, content: str) -> Path:
        self.ensure_dirs()
        img = qrcode.make(content, error_correction=qrcode.constants.ERROR_CORRECT_M)
        buf = io.BytesIO()
        img.save(buf)
        path = self.peer_qr_path(peer_name)
        _write_private(path, buf.getvalue())
        return path

    def remove_peer_files(self, peer_name: str) -> None:
        for path in (self.peer_config_path(peer_name), self.peer_qr_path(peer_name)):
            if path.exists():
                path.unlink()

    # ---------- État ----------

    def has_state(self) -> bool:
        return self.state_path.exists()

    def write_state(self, state: GlobalState) -> Path:
        self.ensure_dirs()
        _write_private(self.state_path, dump_state(state) + "\n")
        logger.debug("state written to %s", self.state_path)
        return self.state_path

    def read_state(self) -> GlobalState:
        return load_state(self.state_path)

    def write_root_key(self, root: RootSecret) -> Path:
        self.ensure_dirs()
        _write_private(self.root_key_path, root.to_base64() + "\n")
        return self.root_key_path

    def read_root_key(self) -> RootSecret:
        try:
            text = self.root_key_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise InvalidRootSecret(f"Root secret missing: {self.root_key_path}") from None
        return RootSecret.from_base64(text)

    def write_network(self, root: RootSecret, state: GlobalState) -> None:
        """Replace root.key and server.json together.

        Both files are fully written to temporaries before either is swapped
        in, so a failed write leaves the previous pair untouched.
        """
        self.ensure_dirs()
        staged = []
        try:
            staged.append((_stage_private(self.state_path, dump_state(state) + "\n"), self.state_path))
            staged.append((_stage_private(self.root_key_path, root.to_base64() + "\n"), self.root_key_path))
        except OSError:
            for tmp, _ in staged:
                tmp.unlink()
            raise
        for tmp, path in staged:
            os.replace(tmp, path)
        logger.debug("root secret and state written to %s", self.state_dir)
