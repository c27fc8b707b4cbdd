from decimal import Decimal

from pydantic import BaseModel, ConfigDict


class StockLotRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    location_id: int
    item_id: int

    on_hand: Decimal
    wac: Decimal  # 4 dp, arrondi à 2 dp uniquement à l'affichage
    min_stock: Decimal | None = None
    max_stock: Decimal | None = None
