from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Tuple

from .errors import FatalSetupError


class Role(enum.Enum):
    """Roles a node image can play in a devnet, keyed by capability tag."""

    L1 = "taiko-l1"
    L2 = "taiko-geth"
    DRIVER = "taiko-driver"
    PROPOSER = "taiko-proposer"
    PROVER = "taiko-prover"
    PROTOCOL = "taiko-protocol"


@dataclass(slots=True)
class ImageDefinition:
    name: str
    image: str
    roles: Tuple[str, ...] = ()
    client_type: str = ""

    def has_role(self, role: Role) -> bool:
        return role.value in self.roles


@dataclass(slots=True)
class ClientsByRole:
    by_role: Dict[Role, List[ImageDefinition]] = field(
        default_factory=lambda: {role: [] for role in Role}
    )

    def get(self, role: Role) -> List[ImageDefinition]:
        return list(self.by_role.get(role, []))

    def require(self, role: Role) -> ImageDefinition:
        """
        Return the primary image for ``role``.

        An empty role is only an error once a topology step needs it.
        """
        images = self.by_role.get(role) or []
        if not images:
            raise FatalSetupError(f"no {role.value} client types found")
        return images[0]

    def __str__(self) -> str:
        parts = []
        for role in Role:
            names = ",".join(i.name for i in self.by_role.get(role, [])) or "-"
            parts.append(f"{role.name.lower()}={names}")
        return " ".join(parts)


def classify(images: Iterable[ImageDefinition]) -> ClientsByRole:
    out = ClientsByRole()
    for image in images:
        for role in Role:
            if image.has_role(role):
                out.by_role[role].append(image)
    return out
