from posledger.models.audit_log import AuditLog
from posledger.models.customer import Customer, Supplier
from posledger.models.product import Product
from posledger.models.inventory import InventoryLedger
from posledger.models.order import ShippingOrder, ShippingOrderItem
