from typing import Any


class LedgerDomainError(Exception):
    """Base for errors surfaced to callers of the order/ledger operations."""

    code = "domain_error"
    status_code = 400

    def __init__(self, message: str, *, details: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details


class DuplicateOrderNumber(LedgerDomainError):
    code = "duplicate_order_number"
    status_code = 409

    def __init__(self, number: str):
        super().__init__(
            f"Order number already exists: {number}",
            details=[{"field": "human_number", "message": "already in use", "value": number}],
        )
        self.number = number


class OrderNumberAllocationFailed(LedgerDomainError):
    code = "order_number_unavailable"
    status_code = 503

    def __init__(self, attempts: int):
        super().__init__(f"Could not allocate a unique order number after {attempts} attempts")
        self.attempts = attempts


class InsufficientStock(LedgerDomainError):
    code = "insufficient_stock"
    status_code = 400

    def __init__(self, shortages: list[dict[str, Any]]):
        codes = ", ".join(str(item["product_code"]) for item in shortages)
        super().__init__(f"Insufficient stock for: {codes}", details=shortages)
        self.shortages = shortages


class OrderLocked(LedgerDomainError):
    code = "order_locked"
    status_code = 409

    def __init__(self, order_id: str, status: str):
        super().__init__(f"Order {order_id} is '{status}' and can no longer be changed")
        self.order_id = order_id
        self.status = status


class OrderNotEditable(LedgerDomainError):
    code = "order_not_editable"
    status_code = 409


class InvalidStatusTransition(LedgerDomainError):
    code = "invalid_status_transition"
    status_code = 400

    def __init__(self, current_status: str, next_status: str):
        super().__init__(f"Cannot transition order from '{current_status}' to '{next_status}'")
        self.current_status = current_status
        self.next_status = next_status


class LedgerWriteConflict(LedgerDomainError):
    code = "ledger_write_conflict"
    status_code = 409

    def __init__(self, *, source_order_id: str, product_id: str, existing_qty: int, attempted_qty: int):
        super().__init__(
            "Outbound shipment entry already recorded with a different quantity",
            details=[
                {
                    "source_order_id": source_order_id,
                    "product_id": product_id,
                    "existing_qty_delta": existing_qty,
                    "attempted_qty_delta": attempted_qty,
                }
            ],
        )


class ProductNotFound(LedgerDomainError):
    code = "product_not_found"
    status_code = 404

    def __init__(self, product_code: str):
        super().__init__(
            f"Product not found: {product_code}",
            details=[{"field": "product_code", "message": "unknown product", "value": product_code}],
        )
        self.product_code = product_code


class OrderNotFound(LedgerDomainError):
    code = "not_found"
    status_code = 404

    def __init__(self, order_id: str):
        super().__init__("Shipping order not found")
        self.order_id = order_id


class InvalidOrderData(LedgerDomainError):
    code = "invalid_order"
    status_code = 422
