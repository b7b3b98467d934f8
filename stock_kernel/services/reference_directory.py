"""
Reference directory -- product / warehouse / location lookups.

Responsibility:
    Answers "does this id exist and is it active?" for the three reference
    entities every movement names, and lists a warehouse's locations.  The
    accounting engine consults it before any write.

Architecture position:
    Kernel > Services.  ReferenceDirectory is the seam to the catalog; the
    in-memory implementation backs tests, scripts and the YAML fixture loader
    in stock_config.

Invariants enforced:
    - A location is valid only for the warehouse it belongs to.
    - Deactivated entries answer False but remain listed as inactive.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, replace

from stock_kernel.logging_config import get_logger

logger = get_logger("services.reference_directory")


@dataclass(frozen=True)
class ReferenceEntry:
    """A product or warehouse known to the directory."""

    id: str
    name: str
    is_active: bool = True


@dataclass(frozen=True)
class LocationEntry:
    """A storage location inside one warehouse."""

    id: str
    warehouse_id: str
    name: str
    is_active: bool = True


class ReferenceDirectory(ABC):
    """Read-only view of the catalog used for input validation."""

    @abstractmethod
    def product_is_active(self, product_id: str) -> bool:
        ...

    @abstractmethod
    def warehouse_is_active(self, warehouse_id: str) -> bool:
        ...

    @abstractmethod
    def location_is_active(self, warehouse_id: str, location_id: str) -> bool:
        ...

    @abstractmethod
    def locations_for_warehouse(self, warehouse_id: str) -> list[LocationEntry]:
        """Active locations of ``warehouse_id`` in registration order."""
        ...


class InMemoryReferenceDirectory(ReferenceDirectory):
    """Dictionary-backed directory."""

    def __init__(self):
        self._products: dict[str, ReferenceEntry] = {}
        self._warehouses: dict[str, ReferenceEntry] = {}
        self._locations: dict[tuple[str, str], LocationEntry] = {}

    # Registration

    def register_product(self, product_id: str, name: str | None = None, active: bool = True) -> None:
        self._products[product_id] = ReferenceEntry(product_id, name or product_id, active)

    def register_warehouse(self, warehouse_id: str, name: str | None = None, active: bool = True) -> None:
        self._warehouses[warehouse_id] = ReferenceEntry(warehouse_id, name or warehouse_id, active)

    def register_location(
        self,
        warehouse_id: str,
        location_id: str,
        name: str | None = None,
        active: bool = True,
    ) -> None:
        self._locations[(warehouse_id, location_id)] = LocationEntry(
            location_id, warehouse_id, name or location_id, active,
        )

    def deactivate_product(self, product_id: str) -> None:
        self._products[product_id] = replace(self._products[product_id], is_active=False)
        logger.info("product_deactivated", extra={"product_id": product_id})

    def deactivate_warehouse(self, warehouse_id: str) -> None:
        self._warehouses[warehouse_id] = replace(self._warehouses[warehouse_id], is_active=False)
        logger.info("warehouse_deactivated", extra={"warehouse_id": warehouse_id})

    def deactivate_location(self, warehouse_id: str, location_id: str) -> None:
        key = (warehouse_id, location_id)
        self._locations[key] = replace(self._locations[key], is_active=False)
        logger.info(
            "location_deactivated",
            extra={"warehouse_id": warehouse_id, "location_id": location_id},
        )

    # ReferenceDirectory

    def product_is_active(self, product_id: str) -> bool:
        entry = self._products.get(product_id)
        return entry is not None and entry.is_active

    def warehouse_is_active(self, warehouse_id: str) -> bool:
        entry = self._warehouses.get(warehouse_id)
        return entry is not None and entry.is_active

    def location_is_active(self, warehouse_id: str, location_id: str) -> bool:
        entry = self._locations.get((warehouse_id, location_id))
        return entry is not None and entry.is_active

    def locations_for_warehouse(self, warehouse_id: str) -> list[LocationEntry]:
        return [
            entry for (wh, _), entry in self._locations.items()
            if wh == warehouse_id and entry.is_active
        ]

    @property
    def product_ids(self) -> list[str]:
        return list(self._products)

    @property
    def warehouse_ids(self) -> list[str]:
        return list(self._warehouses)
