"""
Ledger Configuration Schema.

Defines the structure and defaults for ledger settings: location codes,
role classes, and the admin grace window used by the date gate.
Actual values are loaded from YAML at startup (see ``lab_config.loader``).
"""

from dataclasses import dataclass, field
from typing import Self

from lab_kernel.logging_config import get_logger

logger = get_logger("config.schema")


DEFAULT_ADMIN_ROLES = frozenset({"admin", "central_store_admin"})
DEFAULT_STANDARD_ROLES = frozenset({"faculty", "lab_assistant"})


@dataclass(frozen=True)
class LedgerConfig:
    """
    Configuration schema for the allocation and return ledger.

    Field defaults match the deployed lab system:

        config = LedgerConfig(
            central_store_location="central-store",
            admin_grace_days=2,
        )
    """

    # Locations
    central_store_location: str = "central-store"
    faculty_location: str = "faculty"

    # Date gate
    admin_grace_days: int = 2

    # Roles
    admin_roles: frozenset[str] = field(default_factory=lambda: DEFAULT_ADMIN_ROLES)
    standard_roles: frozenset[str] = field(default_factory=lambda: DEFAULT_STANDARD_ROLES)

    # Administrative edits
    default_disable_reason: str = "No reason provided"

    # Chemical batches are consumed earliest-expiry first when True,
    # creation order otherwise.
    chemical_fifo: bool = True

    def __post_init__(self):
        if not self.central_store_location.strip():
            raise ValueError("central_store_location cannot be blank")
        if not self.faculty_location.strip():
            raise ValueError("faculty_location cannot be blank")
        if self.central_store_location == self.faculty_location:
            raise ValueError("central_store_location and faculty_location must differ")
        if self.admin_grace_days < 0:
            raise ValueError("admin_grace_days cannot be negative")
        if not self.admin_roles:
            raise ValueError("admin_roles cannot be empty")
        overlap = set(self.admin_roles) & set(self.standard_roles)
        if overlap:
            raise ValueError(f"roles cannot be both admin and standard: {sorted(overlap)}")
        # Normalise lists/sets from YAML into frozensets
        object.__setattr__(self, "admin_roles", frozenset(self.admin_roles))
        object.__setattr__(self, "standard_roles", frozenset(self.standard_roles))
        logger.info(
            "ledger_config_initialized",
            extra={
                "central_store_location": self.central_store_location,
                "admin_grace_days": self.admin_grace_days,
                "admin_roles": sorted(self.admin_roles),
                "standard_roles": sorted(self.standard_roles),
            },
        )

    @property
    def known_roles(self) -> frozenset[str]:
        return self.admin_roles | self.standard_roles

    def is_admin(self, role: str) -> bool:
        return role in self.admin_roles

    @classmethod
    def with_defaults(cls) -> Self:
        """Create config with standard defaults."""
        return cls()
