"""Reusable payloads for order and POS sync scenarios."""

FLOUR_ORDER_PAYLOAD = {
    "department": "Kitchen",
    "notes": "Before Friday",
    "items": [
        {"name": "Flour", "quantity": 5, "unit": "kg"},
    ],
}

TWO_ITEM_ORDER_PAYLOAD = {
    "department": "Kitchen",
    "items": [
        {"id": "a1", "name": "Tomatoes", "quantity": 3, "unit": "kg", "price": 2.5, "category": "Veg"},
        {"id": "a2", "name": "Basil", "quantity": 1, "unit": "bunch", "brand": "Green Leaf"},
    ],
}

POS_STORAGES = [
    {"storage_id": "1", "storage_name": "Main Kitchen"},
    {"storage_id": "2", "storage_name": "Bar"},
]

POS_SUPPLIERS = [
    {"supplier_id": "11", "supplier_name": "Fresh Farm", "supplier_phone": "+100", "supplier_adress": "1 Farm Rd"},
    {"supplier_id": "12", "supplier_name": "Dairy Co", "supplier_phone": None},
]

# Ten-ingredient catalog; ids "101".."110".
POS_INGREDIENTS = [
    {"ingredient_id": str(100 + n), "ingredient_name": f"Ingredient {n}", "ingredient_unit": "kg"}
    for n in range(1, 11)
]

POS_LEFTOVERS_THREE = [
    {"ingredient_id": "101", "ingredient_name": "Ingredient 1", "storage_ingredient_left": "4"},
    {"ingredient_id": "105", "ingredient_name": "Ingredient 5", "storage_ingredient_left": "0"},
    {"ingredient_id": "109", "ingredient_name": "Ingredient 9", "storage_ingredient_left": "12.5"},
]
