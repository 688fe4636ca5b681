class DealerbookError(Exception):
    status_code = 400

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class ValidationFailed(DealerbookError):
    status_code = 400


class NotFoundError(DealerbookError):
    status_code = 404


class ConflictError(DealerbookError):
    status_code = 409


class InsufficientStock(ValidationFailed):
    def __init__(self, name: str, available: float, required: float) -> None:
        super().__init__(f"not enough stock for {name}: available {available:g}, required {required:g}")
        self.name = name
        self.available = available
        self.required = required


class SmsGatewayError(Exception):
    pass
