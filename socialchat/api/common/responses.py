from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


class APIResponse:
    @staticmethod
    def success(
        data: Any, message: str = "Success", status_code: int = 200
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status_code,
            content={
                "status": "success",
                "message": message,
                "data": jsonable_encoder(data),
            },
        )

    @staticmethod
    def error(
        message: str,
        status_code: int = 400,
        code: Optional[str] = None,
        detail: Any = None,
    ) -> JSONResponse:
        content = {"status": "error", "message": message}
        if code:
            content["code"] = code
        if detail is not None:
            content["detail"] = jsonable_encoder(detail)
        return JSONResponse(status_code=status_code, content=content)
