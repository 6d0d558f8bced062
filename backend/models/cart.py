from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CartItem(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, extra="ignore")

    product: Any
    name: Optional[str] = None
    image: Optional[str] = None
    quantity: int = Field(1, ge=1)
    weight: Optional[str] = None
    selectedPrice: float = Field(..., ge=0)


class CartAddon(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, extra="ignore")

    addon: Any
    name: Optional[str] = None
    price: float = Field(0, ge=0)
    quantity: int = Field(1, ge=1)


class CartSnapshot(BaseModel):
    """
    Priced cart frozen at checkout; prices are never re-read from the catalog.
    """

    model_config = ConfigDict(extra="ignore")

    items: List[CartItem] = []
    addons: List[CartAddon] = []

    @classmethod
    def from_document(cls, cart: dict | None) -> "CartSnapshot":
        if not cart:
            return cls()
        return cls(items=cart.get("items") or [], addons=cart.get("addons") or [])

    @property
    def is_empty(self) -> bool:
        return not self.items
