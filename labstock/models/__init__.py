from __future__ import annotations

# Importing the models registers them with ``Base.metadata`` so that
# ``create_all`` and relationship string lookups see every table.
from .category import ConsumableCategory
from .consumable import Consumable
from .people import Person
from .transaction import ConsumableTransaction
from .vendor import Vendor

__all__ = [
    "Consumable",
    "ConsumableCategory",
    "ConsumableTransaction",
    "Person",
    "Vendor",
]
