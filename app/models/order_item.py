from beanie import Document, PydanticObjectId


class OrderItem(Document):
    order_id: PydanticObjectId
    menu_item_id: str
    quantity: int  # >= 1
    unit_price: float = 0.0  # snapshot at order time

    class Settings:
        name = "order_items"
        indexes = [[("order_id", 1)]]
