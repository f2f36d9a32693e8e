import uuid
from typing import Any, Dict, List, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse

from app.schemas.response_schemas import ApiResponse, PaginationMeta, ResponseStatus


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


def _render(request: Request, status_code: int, **fields) -> JSONResponse:
    envelope = ApiResponse(
        request_id=_request_id(request), path=str(request.url.path), **fields
    )
    return JSONResponse(
        status_code=status_code, content=envelope.model_dump(exclude_none=True)
    )


class ResponseBuilder:
    """Builds the JSON envelope shared by every endpoint."""

    @staticmethod
    def success(
        request: Request,
        data: Any = None,
        message: str = "Request successful",
        meta: Optional[Dict[str, Any]] = None,
        pagination: Optional[PaginationMeta] = None,
        status_code: int = status.HTTP_200_OK,
    ) -> JSONResponse:
        return _render(
            request,
            status_code,
            success=True,
            status=ResponseStatus.SUCCESS,
            message=message,
            data=data,
            meta=meta,
            pagination=pagination,
        )

    @staticmethod
    def error(
        request: Request,
        message: str = "An error occurred",
        errors: Optional[List[Dict[str, Any]]] = None,
        error_code: Optional[str] = None,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        data: Any = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> JSONResponse:
        """Error envelope; ``error_code`` is exposed as ``meta.error_code``."""
        meta = dict(meta or {})
        if error_code:
            meta["error_code"] = error_code

        return _render(
            request,
            status_code,
            success=False,
            status=ResponseStatus.ERROR,
            message=message,
            data=data,
            meta=meta or None,
            errors=errors,
        )

    @staticmethod
    def paginated(
        request: Request,
        data: List[Any],
        page: int,
        per_page: int,
        total: int,
        message: str = "Data retrieved successfully",
        meta: Optional[Dict[str, Any]] = None,
    ) -> JSONResponse:
        total_pages = (total + per_page - 1) // per_page
        has_next = page < total_pages
        has_prev = page > 1

        return ResponseBuilder.success(
            request=request,
            data=data,
            message=message,
            meta=meta,
            pagination=PaginationMeta(
                page=page,
                per_page=per_page,
                total=total,
                total_pages=total_pages,
                has_next=has_next,
                has_prev=has_prev,
                next_page=page + 1 if has_next else None,
                prev_page=page - 1 if has_prev else None,
            ),
        )
