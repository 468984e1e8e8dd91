from decimal import Decimal
from typing import Optional


SERVICE_PRICES: dict[str, Decimal] = {
    "MONTAGEM": Decimal("5.00"),
    "ACRILIZAÇÃO": Decimal("5.00"),
    "BARRA": Decimal("6.00"),
    "PLANO DE CERA": Decimal("2.00"),
    "PREPARO": Decimal("2.00"),
    "2ª MONTAGEM": Decimal("2.50"),
}

SERVICE_OPTIONS: list[str] = list(SERVICE_PRICES)


def is_known_type(service_type: Optional[str]) -> bool:
    return service_type in SERVICE_PRICES

