"""
全局异常处理模块 (Global Exception Handling Module)

定义业务异常类和 FastAPI 全局异常处理器，提供统一的错误响应格式。
探测失败属于数据而非异常；这里只覆盖需要向调用方暴露的错误。

Defines business exception classes and FastAPI global exception handlers with a unified
error response format. Probe failures are data, not exceptions; only errors that must
reach a caller are modelled here.
"""
import logging
import traceback
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import HTTPException
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


# ============================================================
# 业务异常类 (Business Exception Classes)
# ============================================================

class BusinessError(Exception):
    """业务异常基类 (Base Business Exception)"""
    status_code: int = 400
    error: str = "business_error"

    def __init__(self, message: str, detail: Optional[str] = None):
        self.message = message
        self.detail = detail
        super().__init__(message)


class NotFoundError(BusinessError):
    """资源不存在 (Resource Not Found)"""
    status_code = 404
    error = "not_found"


class ValidationError(BusinessError):
    """数据校验失败 (Validation Error)"""
    status_code = 422
    error = "validation_error"


class RateLimitedError(BusinessError):
    """调用过于频繁 (Rate Limited)"""
    status_code = 429
    error = "rate_limited"

    def __init__(self, message: str, retry_after_minutes: int, detail: Optional[str] = None):
        self.retry_after_minutes = retry_after_minutes
        super().__init__(message, detail)


class PersistenceError(BusinessError):
    """持久化失败，重试后仍无法写入 (Persistence Failed After Retries)"""
    status_code = 503
    error = "persistence_error"


# ============================================================
# 全局异常处理器注册 (Global Exception Handler Registration)
# ============================================================

def register_exception_handlers(app: FastAPI) -> None:
    """
    注册全局异常处理器到 FastAPI 应用 (Register global exception handlers to FastAPI app)

    处理优先级：
    1. BusinessError 子类 → 对应 HTTP 状态码 + 结构化响应
    2. HTTPException → 保持原样，包装为统一格式
    3. Exception → 500 + 完整 traceback 日志
    """

    @app.exception_handler(BusinessError)
    async def business_error_handler(request: Request, exc: BusinessError) -> JSONResponse:
        content = {
            "error": exc.error,
            "message": exc.message,
            "detail": exc.detail,
            "status_code": exc.status_code,
        }
        headers = None
        if isinstance(exc, RateLimitedError):
            content["retry_after_minutes"] = exc.retry_after_minutes
            headers = {"Retry-After": str(exc.retry_after_minutes * 60)}
        return JSONResponse(status_code=exc.status_code, content=content, headers=headers)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": "http_error",
                "message": str(exc.detail),
                "detail": None,
                "status_code": exc.status_code,
            },
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unhandled exception on %s %s: %s\n%s",
            request.method,
            request.url.path,
            str(exc),
            traceback.format_exc(),
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "服务器内部错误，请稍后重试 (Internal server error, please try again later)",
                "detail": None,
                "status_code": 500,
            },
        )
