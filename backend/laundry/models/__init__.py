from .catalog import Product
from .shipments import Shipment, ShipmentLine

__all__ = [
    'Product',
    'Shipment', 'ShipmentLine',
]
