"""
Principal addressing — DID parsing and storage space ids.

Principals are ``did:pkh`` identifiers encoding a chain/address tuple:

    did:pkh:{namespace}:{chain_id}:{address}     e.g. did:pkh:eip155:1:0xabc...

Storage spaces of a principal are addressed as:

    {scheme}:pkh:{namespace}:{chain_id}:{address}:{name}
"""
import re
from dataclasses import dataclass

from .exceptions import InvalidPrincipal

SPACE_SCHEME = "tinycloud"
DEFAULT_SPACE = "default"
PUBLIC_SPACE = "public"

_NAMESPACE = re.compile(r"^[-a-z0-9]{3,8}$")
_REFERENCE = re.compile(r"^[-_a-zA-Z0-9]{1,32}$")
_ADDRESS = re.compile(r"^[-.%a-zA-Z0-9]{1,128}$")
_SPACE_NAME = re.compile(r"^[-_.a-zA-Z0-9]{1,64}$")


@dataclass(frozen=True)
class Principal:
    """A parsed ``did:pkh`` principal."""

    namespace: str
    chain_id: str
    address: str

    @property
    def did(self) -> str:
        return f"did:pkh:{self.namespace}:{self.chain_id}:{self.address}"

    def space_id(self, name: str = DEFAULT_SPACE, scheme: str = SPACE_SCHEME) -> str:
        if not _SPACE_NAME.match(name):
            raise InvalidPrincipal(f"Invalid space name: {name!r}")
        return (
            f"{scheme}:pkh:{self.namespace}:{self.chain_id}:{self.address}:{name}"
        )

    @property
    def default_space_id(self) -> str:
        return self.space_id(DEFAULT_SPACE)

    @property
    def public_space_id(self) -> str:
        return self.space_id(PUBLIC_SPACE)

    def __str__(self) -> str:
        return self.did


def parse_did(did: str) -> Principal:
    """Validate and parse a ``did:pkh`` identifier.

    Raises:
        InvalidPrincipal: If ``did`` is not a well-formed did:pkh.
    """
    if not isinstance(did, str) or not did:
        raise InvalidPrincipal("Principal DID must be a non-empty string")
    parts = did.split(":")
    if len(parts) != 5 or parts[0] != "did" or parts[1] != "pkh":
        raise InvalidPrincipal(
            f"Expected did:pkh:<namespace>:<chain>:<address>, got {did!r}"
        )
    _, _, namespace, chain_id, address = parts
    if not _NAMESPACE.match(namespace):
        raise InvalidPrincipal(f"Invalid chain namespace in {did!r}")
    if not _REFERENCE.match(chain_id):
        raise InvalidPrincipal(f"Invalid chain id in {did!r}")
    if not _ADDRESS.match(address):
        raise InvalidPrincipal(f"Invalid account address in {did!r}")
    if namespace == "eip155" and not re.match(r"^0x[0-9a-fA-F]{40}$", address):
        raise InvalidPrincipal(f"Invalid EVM address in {did!r}")
    return Principal(namespace=namespace, chain_id=chain_id, address=address)


def parse_space_id(space_id: str) -> tuple[Principal, str]:
    """Split a space id into its owning principal and space name.

    Raises:
        InvalidPrincipal: If ``space_id`` is malformed.
    """
    parts = space_id.split(":") if isinstance(space_id, str) else []
    if len(parts) != 6 or parts[1] != "pkh":
        raise InvalidPrincipal(f"Invalid space id: {space_id!r}")
    principal = parse_did(f"did:pkh:{parts[2]}:{parts[3]}:{parts[4]}")
    if not _SPACE_NAME.match(parts[5]):
        raise InvalidPrincipal(f"Invalid space name in {space_id!r}")
    return principal, parts[5]


def did_for_address(address: str, chain_id: int = 1, namespace: str = "eip155") -> str:
    """Build (and validate) the did:pkh of an account address."""
    return parse_did(f"did:pkh:{namespace}:{chain_id}:{address}").did
