"""Billing holder references.

A holder is whoever owns a subscription: an individual job seeker, a
recruiting organization or a business. Holders live in other services, so
parsing only validates the reference structurally.
"""
from dataclasses import dataclass
from uuid import UUID

from entitlements.exceptions import HolderNotFound
from entitlements.models.plan import Product
from entitlements.models.subscription import HolderKind

# Product whose free plan a holder falls back to without a subscription
DEFAULT_PRODUCT: dict[HolderKind, Product] = {
    HolderKind.INDIVIDUAL: Product.INDIVIDUAL,
    HolderKind.ORGANIZATION: Product.RECRUITER,
    HolderKind.BUSINESS: Product.CORPORATE,
}


@dataclass(frozen=True)
class Holder:
    """Typed reference to a billing holder."""

    kind: HolderKind
    id: UUID

    @classmethod
    def parse(cls, holder_type: str, holder_id: str | UUID) -> "Holder":
        """
        Build a holder from its external string form.

        Raises:
            HolderNotFound: If the kind is unknown or the id is not a UUID
        """
        try:
            kind = HolderKind(holder_type)
        except ValueError:
            raise HolderNotFound(f"Unknown holder type: {holder_type}", holder_type=holder_type)

        if isinstance(holder_id, UUID):
            return cls(kind=kind, id=holder_id)

        try:
            return cls(kind=kind, id=UUID(str(holder_id)))
        except ValueError:
            raise HolderNotFound(f"Invalid holder id: {holder_id}", holder_id=str(holder_id))

    @property
    def default_product(self) -> Product:
        """Product line used for the holder's free fallback plan."""
        return DEFAULT_PRODUCT[self.kind]

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"
