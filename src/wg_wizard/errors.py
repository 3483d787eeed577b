# src/wg_wizard/errors.py
from __future__ import annotations


class WizardError(Exception):
    """Base class for every error raised by wg_wizard."""


# ---------- Saisie ----------

class ParseError(WizardError, ValueError):
    """Malformed user input (subnet, address, endpoint, peer name)."""


class InvalidAddress(ParseError):
    pass


class InvalidPrefix(ParseError):
    pass


class InvalidEndpoint(ParseError):
    pass


class InvalidPeerName(ParseError):
    pass


# ---------- Plages d'adresses ----------

class RangeError(WizardError):
    """An address is outside the subnet or not tracked the way the caller expects."""


class OutOfRangeError(RangeError, ValueError):
    pass


class NotExcludedError(RangeError):
    pass


class AddressInUseError(RangeError):
    pass


class ExhaustedError(WizardError, RuntimeError):
    def __init__(self, cidr: str):
        super().__init__(
            f"No free address left in {cidr}: increase the subnet size or remove peers"
        )
        self.cidr = cidr


# ---------- Clés ----------

class InvalidRootSecret(WizardError):
    pass


class KeyMismatchError(WizardError):
    pass


# ---------- Peers / état ----------

class PeerNotFoundError(WizardError, KeyError):
    def __str__(self) -> str:
        # KeyError repr-quotes its argument
        return str(self.args[0]) if self.args else ""


class DuplicatePeerError(WizardError, ValueError):
    pass


class InvalidStateError(WizardError):
    pass


class StateExistsError(WizardError, FileExistsError):
    pass


class StateNotFoundError(WizardError, FileNotFoundError):
    pass
