from posledger.schemas.common import ErrorOut


_ERROR_EXAMPLES: dict[int, tuple[str, str]] = {
    400: ("insufficient_stock", "Insufficient stock for: P0001"),
    404: ("not_found", "Resource not found"),
    409: ("order_locked", "Order is 'delivered' and can no longer be changed"),
    422: ("validation_error", "Validation failed"),
    500: ("internal_error", "Internal server error"),
    503: ("order_number_unavailable", "Could not allocate a unique order number"),
}


def error_responses(*status_codes: int) -> dict[int, dict]:
    responses: dict[int, dict] = {}
    for status_code in status_codes:
        code, message = _ERROR_EXAMPLES.get(status_code, ("http_error", "HTTP error"))
        responses[status_code] = {
            "model": ErrorOut,
            "description": message,
            "content": {
                "application/json": {
                    "example": {
                        "error": {
                            "code": code,
                            "message": message,
                            "request_id": "request-id",
                            "path": "/shipping-orders",
                            "details": None,
                        }
                    }
                }
            },
        }
    return responses
