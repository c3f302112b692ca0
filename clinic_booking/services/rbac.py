"""Role-Based Access Control (RBAC) for the booking core.

The identity collaborator supplies a principal (id + role) for every
call. This module maps roles to coarse permissions used to gate API
endpoints; finer per-record rules live in ``clinic_booking.booking.policy``.
"""

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """Roles issued by the identity collaborator."""

    PATIENT = "patient"
    DOCTOR = "doctor"
    NURSE = "nurse"
    CLINIC_ADMIN = "clinic_admin"
    LAB_ADMIN = "lab_admin"
    PLATFORM_ADMIN = "platform_admin"


# Roles treated as clinic staff for front-desk actions
STAFF_ROLES = frozenset({Role.NURSE, Role.CLINIC_ADMIN, Role.PLATFORM_ADMIN})


@dataclass(frozen=True)
class Principal:
    """Authenticated caller, trusted verbatim."""

    id: int
    role: Role

    @property
    def is_patient(self) -> bool:
        return self.role == Role.PATIENT

    @property
    def is_doctor(self) -> bool:
        return self.role == Role.DOCTOR

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES


class Permission(str, Enum):
    """Available permissions in the system."""

    # Availability
    SLOTS_READ = "slots:read"
    SLOTS_WRITE = "slots:write"

    # Appointments
    APPOINTMENTS_BOOK = "appointments:book"
    APPOINTMENTS_READ = "appointments:read"
    APPOINTMENTS_MANAGE = "appointments:manage"

    # Balance ledger
    LEDGER_READ = "ledger:read"
    LEDGER_DEPOSIT = "ledger:deposit"

    # Telemedicine
    TELEMEDICINE_JOIN = "telemedicine:join"
    TELEMEDICINE_MANAGE = "telemedicine:manage"


# Role to permissions mapping
ROLE_PERMISSIONS: dict[Role, set[Permission]] = {
    Role.PATIENT: {
        Permission.SLOTS_READ,
        Permission.APPOINTMENTS_BOOK,
        Permission.APPOINTMENTS_READ,
        Permission.APPOINTMENTS_MANAGE,  # own appointments only, see booking.policy
        Permission.LEDGER_READ,
        Permission.TELEMEDICINE_JOIN,
    },
    Role.DOCTOR: {
        Permission.SLOTS_READ,
        Permission.SLOTS_WRITE,
        Permission.APPOINTMENTS_BOOK,
        Permission.APPOINTMENTS_READ,
        Permission.APPOINTMENTS_MANAGE,
        Permission.TELEMEDICINE_JOIN,
        Permission.TELEMEDICINE_MANAGE,
    },
    Role.NURSE: {
        Permission.SLOTS_READ,
        Permission.SLOTS_WRITE,
        Permission.APPOINTMENTS_READ,
        Permission.APPOINTMENTS_MANAGE,
    },
    Role.CLINIC_ADMIN: {
        Permission.SLOTS_READ,
        Permission.SLOTS_WRITE,
        Permission.APPOINTMENTS_BOOK,
        Permission.APPOINTMENTS_READ,
        Permission.APPOINTMENTS_MANAGE,
        Permission.LEDGER_READ,
        Permission.LEDGER_DEPOSIT,
    },
    Role.LAB_ADMIN: {
        Permission.SLOTS_READ,
        Permission.SLOTS_WRITE,
    },
    Role.PLATFORM_ADMIN: set(Permission),
}


class RBACService:
    """Service for checking role-based permissions."""

    @staticmethod
    def get_permissions(role: Role) -> set[Permission]:
        """Get all permissions for a role."""
        return ROLE_PERMISSIONS.get(role, set())

    @staticmethod
    def has_permission(role: Role, permission: Permission) -> bool:
        """Check if a role has a specific permission."""
        permissions = ROLE_PERMISSIONS.get(role, set())
        return permission in permissions

    @staticmethod
    def has_any_permission(role: Role, permissions: list[Permission]) -> bool:
        """Check if a role has any of the specified permissions."""
        role_permissions = ROLE_PERMISSIONS.get(role, set())
        return any(p in role_permissions for p in permissions)

    @staticmethod
    def has_all_permissions(role: Role, permissions: list[Permission]) -> bool:
        """Check if a role has all specified permissions.

        Args:
            role: Role to check
            permissions: List of permissions (all must match)

        Returns:
            True if role has all permissions
        """
        role_permissions = ROLE_PERMISSIONS.get(role, set())
        return all(p in role_permissions for p in permissions)
