import argparse
import logging
import sys
from typing import Optional, Tuple

from wg_wizard import config
from wg_wizard.artifacts import ArtifactPaths
from wg_wizard.errors import (
    InvalidRootSecret,
    PeerNotFoundError,
    StateNotFoundError,
    WizardError,
)
from wg_wizard.init_server import init_server
from wg_wizard.keys import RootSecret
from wg_wizard.models import GlobalState
from wg_wizard.registry import PeerRegistry, rederive_all
from wg_wizard.wireguard import (
    peer_view,
    render_client_conf,
    render_server_conf,
    server_view,
)


# ---------------------------------------------------
# Session : état + secret racine + registre
# ---------------------------------------------------

def _paths(args, interface: Optional[str] = None) -> ArtifactPaths:
    return ArtifactPaths(args.base_dir, interface or config.DEFAULT_INTERFACE)


def open_session(args) -> Tuple[ArtifactPaths, GlobalState, PeerRegistry]:
    paths = _paths(args)
    state = paths.read_state()
    paths.interface = state.server.interface
    root = paths.read_root_key()
    registry = PeerRegistry.from_state(state, root)
    return paths, state, registry


def _write_server_conf(paths, state, registry) -> None:
    path = paths.write_server_config(render_server_conf(server_view(state, registry)))
    print(f"[+] Fichier serveur mis à jour : {path}")
    print("[!] Pense à appliquer la config avec :")
    print(f"    sudo cp {path} /etc/wireguard/{state.server.interface}.conf && "
          f"sudo wg-quick down {state.server.interface} && sudo wg-quick up {state.server.interface}")


def _write_peer_files(paths, state, registry, peer) -> str:
    conf = render_client_conf(peer_view(state, registry, peer))
    paths.write_peer_config(peer.name, conf)
    paths.write_peer_qr(peer.name, conf)
    return conf


def _render_all(paths, state, registry) -> None:
    paths.reset_rendered()
    _write_server_conf(paths, state, registry)
    # séquentiel, dans l'ordre du registre
    for peer in registry:
        _write_peer_files(paths, state, registry, peer)
        print(f"[+] {peer.name} : {paths.peer_config_path(peer.name)}")


# ---------------------------------------------------
# Commande : init (initialisation du serveur)
# ---------------------------------------------------

def cmd_init(args):
    print("[*] Initialisation du serveur WireGuard...")

    paths = _paths(args, args.interface)
    state, registry = init_server(
        paths,
        network_cidr=args.subnet,
        listen_port=args.port,
        endpoint=args.endpoint,
        interface=args.interface,
        dns=args.dns or None,
        allowed_ips=args.allowed_ips,
        post_up=args.post_up,
        post_down=args.post_down,
        peer_count=args.peers,
        force=args.force,
    )

    print("[+] Serveur initialisé.")
    print("[+] Adresse :", registry.server_cidr)
    print(f"[+] Secret racine : {paths.root_key_path} (à sauvegarder, toutes les clés en dérivent)")
    _render_all(paths, state, registry)


# ---------------------------------------------------
# Commande : add-peer
# ---------------------------------------------------

def cmd_add_peer(args):
    paths, state, registry = open_session(args)

    peer = registry.add_peer(
        args.name,
        address=args.address,
        allowed_ips=args.allowed_ips,
        dns=args.dns,
    )
    registry.apply_to(state)

    # fichiers du peer d'abord : si l'écriture échoue, l'état reste inchangé
    try:
        conf = _write_peer_files(paths, state, registry, peer)
    except OSError:
        paths.remove_peer_files(peer.name)
        raise
    paths.write_state(state)
    _write_server_conf(paths, state, registry)

    print(f"[+] Peer ajouté : {peer.name} ({peer.address})")
    print("[+] Configuration client :")
    print(conf)


# ---------------------------------------------------
# Commande : list-peers
# ---------------------------------------------------

def cmd_list(args):
    paths, state, registry = open_session(args)

    print("=== Serveur ===")
    s = state.server
    print(f"Interface : {s.interface}")
    print(f"Adresse   : {registry.server_cidr}")
    print(f"Port      : {s.listen_port}")
    print(f"Endpoint  : {s.endpoint}")
    print(f"Clé pub.  : {registry.server_keypair().public_b64}\n")

    print("=== Peers ===")
    if not registry.peers:
        print("Aucun peer.")
    else:
        for p in registry:
            print(f"- {p.name} (#{p.id}, {p.address}) {p.public_key}")


# ---------------------------------------------------
# Commande : remove-peer
# ---------------------------------------------------

def cmd_remove_peer(args):
    paths, state, registry = open_session(args)

    peer = registry.remove_peer(registry.find(args.name).id)
    registry.apply_to(state)
    paths.write_state(state)
    paths.remove_peer_files(peer.name)

    print(f"[OK] Peer supprimé : {peer.name} (adresse {peer.address} libérée)")
    _write_server_conf(paths, state, registry)


# ---------------------------------------------------
# Commande : export-peer / generate-qr
# ---------------------------------------------------

def cmd_export_peer(args):
    paths, state, registry = open_session(args)

    peer = registry.find(args.name)
    conf = render_client_conf(peer_view(state, registry, peer))
    path = paths.write_peer_config(peer.name, conf)

    print(f"[OK] Config générée : {path}")
    print("\n--- Configuration ---\n")
    print(conf)


def cmd_generate_qr(args):
    paths, state, registry = open_session(args)

    peer = registry.find(args.name)
    conf = render_client_conf(peer_view(state, registry, peer))
    path = paths.write_peer_qr(peer.name, conf)

    print(f"[OK] QR code généré : {path}")


# ---------------------------------------------------
# Commande : render (toutes les configs)
# ---------------------------------------------------

def cmd_render(args):
    paths, state, registry = open_session(args)
    registry.apply_to(state)
    paths.write_state(state)
    _render_all(paths, state, registry)
    print(f"[OK] {len(registry)} peer(s) générés dans {paths.config_dir}")


# ---------------------------------------------------
# Commande : rotate-root
# ---------------------------------------------------

def cmd_rotate_root(args):
    if not args.yes:
        print("[!] Un nouveau secret racine change TOUTES les clés : "
              "chaque config peer déjà distribuée cessera de fonctionner.")
        print("[!] Relance avec --yes pour confirmer.")
        return 1

    paths = _paths(args)
    state = paths.read_state()
    paths.interface = state.server.interface

    root = RootSecret.generate()
    registry = rederive_all(state, root)
    paths.write_network(root, state)

    print("[OK] Nouveau secret racine généré.")
    print(f"[!] {len(registry)} config(s) peer invalidée(s) : redistribue les nouveaux fichiers.")
    _render_all(paths, state, registry)


# ---------------------------------------------------
# CLl / Parser
# ---------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="wg-wizard")
    parser.add_argument("--base-dir", default=config.default_base_dir(),
                        help=f"dossier de sortie (défaut : ${config.BASE_DIR_ENV} ou ./generated)")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="cmd")

    # init
    p_init = sub.add_parser("init")
    p_init.add_argument("--subnet", default=config.DEFAULT_SUBNET)
    p_init.add_argument("--port", type=int, default=config.DEFAULT_LISTEN_PORT)
    p_init.add_argument("--endpoint", default=config.DEFAULT_ENDPOINT)
    p_init.add_argument("--interface", default=config.DEFAULT_INTERFACE)
    p_init.add_argument("--dns", default=config.DEFAULT_DNS, help="chaîne vide pour aucun DNS")
    p_init.add_argument("--allowed-ips", default=config.DEFAULT_ALLOWED_IPS)
    p_init.add_argument("--post-up")
    p_init.add_argument("--post-down")
    p_init.add_argument("--peers", type=int, default=0, help="nombre de peers à créer")
    p_init.add_argument("--force", action="store_true")
    p_init.set_defaults(func=cmd_init)

    # add-peer
    p_add = sub.add_parser("add-peer")
    p_add.add_argument("name")
    p_add.add_argument("--address")
    p_add.add_argument("--dns")
    p_add.add_argument("--allowed-ips")
    p_add.set_defaults(func=cmd_add_peer)

    # list-peers
    p_list = sub.add_parser("list-peers")
    p_list.set_defaults(func=cmd_list)

    # remove-peer
    p_rm = sub.add_parser("remove-peer")
    p_rm.add_argument("name")
    p_rm.set_defaults(func=cmd_remove_peer)

    p_export = sub.add_parser("export-peer")
    p_export.add_argument("name")
    p_export.set_defaults(func=cmd_export_peer)

    # generate-qr
    p_qr = sub.add_parser("generate-qr")
    p_qr.add_argument("name")
    p_qr.set_defaults(func=cmd_generate_qr)

    p_render = sub.add_parser("render")
    p_render.set_defaults(func=cmd_render)

    p_rot = sub.add_parser("rotate-root")
    p_rot.add_argument("--yes", action="store_true")
    p_rot.set_defaults(func=cmd_rotate_root)

    return parser


def main(argv=None) -> int:
    parser = build_parser()

    # parse
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return 0

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        return args.func(args) or 0
    except PeerNotFoundError as exc:
        print(f"[ERREUR] Peer introuvable : {exc}")
    except InvalidRootSecret as exc:
        print(f"[ERREUR] {exc}")
        print("[!] Sans le secret racine d'origine, 'wg-wizard rotate-root --yes' en crée un nouveau "
              "et invalide tous les peers existants.")
    except StateNotFoundError as exc:
        print(f"[ERREUR] {exc}")
        print("[!] Lance d'abord 'wg-wizard init'.")
    except (WizardError, OSError) as exc:
        print(f"[ERREUR] {exc}")
    return 1


if __name__ == "__main__":
    sys.exit(main())
