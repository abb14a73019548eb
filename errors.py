"""
Error taxonomy shared by the services.

Routes never build error bodies themselves: raising one of these lets the
handler registered in main.py answer with {"success": false, "message": ...}.
"""


class ShopError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailed(ShopError):
    status_code = 400


class NotFound(ShopError):
    status_code = 404


class GatewayError(ShopError):
    """Signature computation or a call to the payment gateway failed."""

    status_code = 502
