from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from .schemas import OrderOut, ProductOut


def envelope(
    data: Any = None,
    message: Optional[str] = None,
    success: bool = True,
    errors: Optional[list] = None,
) -> dict:
    """Uniform body: ``{success, message?, data?, errors?}``."""
    body = {"success": success}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = jsonable_encoder(data)
    if errors is not None:
        body["errors"] = jsonable_encoder(errors)
    return body


def error_response(status_code: int, message: str, errors: Optional[list] = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=envelope(message=message, success=False, errors=errors))


def order_data(order) -> dict:
    return OrderOut.model_validate(order).model_dump(mode="json")


def product_data(product) -> dict:
    return ProductOut.model_validate(product).model_dump(mode="json")
