"""
Return lifecycle API endpoints.

Customers open returns, follow them and download their return label; admins
move returns through review, receipt and refund. Service exceptions are
mapped to HTTP status codes here and reported as ``{"detail": ...}``.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, Response, status

from returnflow.api.deps import CurrentActiveUser, CurrentAdmin, ReturnServiceDep
from returnflow.core.logging import get_logger
from returnflow.database.models.user import User
from returnflow.schemas.returns import (
    AdminNotesRequest,
    CreateReturnRequest,
    CreateReturnResponse,
    MarkInTransitRequest,
    RejectReturnRequest,
    ReturnDetailResponse,
    ReturnListResponse,
    ReturnResponse,
    ReturnTransitionResponse,
    ReturnWithOrderResponse,
    SideEffectFailureResponse,
    StatusHistoryResponse,
)
from returnflow.services.carrier.client import CarrierError
from returnflow.services.payments.stripe_client import StripeClientError
from returnflow.services.returns.enums import ReturnStatus
from returnflow.services.returns.repository import (
    ReturnNotFoundError,
    ReturnPersistenceError,
)
from returnflow.services.returns.service import (
    ReturnAccessDeniedError,
    ReturnValidationError,
)
from returnflow.services.returns.state_machine import InvalidStateTransitionError

logger = get_logger(__name__)

router = APIRouter(prefix="/returns", tags=["returns"])


def _to_http_exception(error: Exception, action: str, user: User, **context: object) -> HTTPException:
    """Map a service exception to the HTTP error reported to the caller."""
    log_context = {"action": action, "user_id": str(user.id), **{k: str(v) for k, v in context.items()}}

    if isinstance(error, (ReturnValidationError, InvalidStateTransitionError)):
        logger.warning("Return request rejected", error=str(error), **log_context)
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))

    if isinstance(error, ReturnNotFoundError):
        logger.info("Return resource not found", error=str(error), **log_context)
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))

    if isinstance(error, ReturnAccessDeniedError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(error))

    if isinstance(error, CarrierError):
        logger.error(
            "Carrier request failed",
            error=str(error),
            upstream_status=error.status_code,
            **log_context,
        )
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to fetch return label: {error}",
        )

    if isinstance(error, StripeClientError):
        logger.error("Payment provider request failed", error=str(error), **log_context)
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to process refund: {error}",
        )

    if isinstance(error, ReturnPersistenceError):
        logger.error(
            "Return persistence failed",
            error=str(error),
            context=error.context,
            **log_context,
        )
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to save return changes",
        )

    logger.error(
        "Unexpected error handling return request",
        error=str(error),
        error_type=type(error).__name__,
        **log_context,
    )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="An unexpected error occurred",
    )


def _transition_response(return_request) -> ReturnTransitionResponse:
    return ReturnTransitionResponse(
        success=True,
        return_=ReturnWithOrderResponse.model_validate(return_request),
    )


@router.post(
    "",
    response_model=CreateReturnResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Request a return",
)
async def create_return(
    request: CreateReturnRequest,
    current_user: CurrentActiveUser,
    service: ReturnServiceDep,
) -> CreateReturnResponse:
    """Open a return for items of a delivered order."""
    try:
        return_request = await service.request_return(
            order_id=request.order_id,
            user=current_user,
            items=[item.model_dump() for item in request.items],
            return_reason=request.return_reason,
            customer_notes=request.customer_notes,
        )
    except Exception as e:
        raise _to_http_exception(e, "request_return", current_user, order_id=request.order_id) from e

    return CreateReturnResponse(
        success=True,
        return_id=return_request.id,
        status=return_request.status,
    )


@router.get(
    "",
    response_model=ReturnListResponse,
    summary="List returns",
    description="Admins see every return, customers only their own",
)
async def list_returns(
    current_user: CurrentActiveUser,
    service: ReturnServiceDep,
    status_filter: Optional[ReturnStatus] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
) -> ReturnListResponse:
    try:
        returns, total = await service.list_returns(
            current_user, status=status_filter, skip=skip, limit=limit
        )
    except Exception as e:
        raise _to_http_exception(e, "list_returns", current_user) from e

    return ReturnListResponse(
        returns=[ReturnResponse.model_validate(item) for item in returns],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get(
    "/side-effect-failures",
    response_model=list[SideEffectFailureResponse],
    summary="List side effects awaiting manual replay",
)
async def list_side_effect_failures(
    admin: CurrentAdmin,
    service: ReturnServiceDep,
    return_id: Optional[UUID] = Query(None),
    include_resolved: bool = Query(False),
) -> list[SideEffectFailureResponse]:
    try:
        failures = await service.list_side_effect_failures(
            return_id=return_id, include_resolved=include_resolved
        )
    except Exception as e:
        raise _to_http_exception(e, "list_side_effect_failures", admin) from e

    return [SideEffectFailureResponse.model_validate(failure) for failure in failures]


@router.post(
    "/side-effect-failures/{failure_id}/resolve",
    response_model=SideEffectFailureResponse,
    summary="Mark a side effect failure as handled",
)
async def resolve_side_effect_failure(
    failure_id: UUID,
    admin: CurrentAdmin,
    service: ReturnServiceDep,
) -> SideEffectFailureResponse:
    try:
        failure = await service.resolve_side_effect_failure(failure_id)
    except Exception as e:
        raise _to_http_exception(e, "resolve_side_effect_failure", admin, failure_id=failure_id) from e

    return SideEffectFailureResponse.model_validate(failure)


@router.get(
    "/{return_id}",
    response_model=ReturnDetailResponse,
    summary="Get return",
    description="Return with its order, order items and status history (newest first)",
)
async def get_return(
    return_id: UUID,
    current_user: CurrentActiveUser,
    service: ReturnServiceDep,
) -> ReturnDetailResponse:
    try:
        return_request, history = await service.get_return(return_id, current_user)
    except Exception as e:
        raise _to_http_exception(e, "get_return", current_user, return_id=return_id) from e

    return ReturnDetailResponse(
        return_=ReturnWithOrderResponse.model_validate(return_request),
        status_history=[StatusHistoryResponse.model_validate(entry) for entry in history],
    )


@router.post(
    "/{return_id}/approve",
    response_model=ReturnTransitionResponse,
    summary="Approve a requested return",
)
async def approve_return(
    return_id: UUID,
    request: AdminNotesRequest,
    admin: CurrentAdmin,
    service: ReturnServiceDep,
) -> ReturnTransitionResponse:
    try:
        return_request = await service.approve(
            return_id, admin_notes=request.admin_notes, changed_by=admin.id
        )
    except Exception as e:
        raise _to_http_exception(e, "approve", admin, return_id=return_id) from e

    return _transition_response(return_request)


@router.post(
    "/{return_id}/reject",
    response_model=ReturnTransitionResponse,
    summary="Reject a requested return",
)
async def reject_return(
    return_id: UUID,
    request: RejectReturnRequest,
    admin: CurrentAdmin,
    service: ReturnServiceDep,
) -> ReturnTransitionResponse:
    """
    Reject a return and email the customer the reason.

    Raises:
        HTTPException: 400 without a rejection reason or when the return is
            not in ``return_requested``, 404 if it does not exist
    """
    try:
        return_request = await service.reject(
            return_id,
            rejection_reason=request.rejection_reason,
            admin_notes=request.admin_notes,
            changed_by=admin.id,
        )
    except Exception as e:
        raise _to_http_exception(e, "reject", admin, return_id=return_id) from e

    return _transition_response(return_request)


@router.post(
    "/{return_id}/in-transit",
    response_model=ReturnTransitionResponse,
    summary="Mark a return parcel as picked up by the carrier",
)
async def mark_return_in_transit(
    return_id: UUID,
    request: MarkInTransitRequest,
    admin: CurrentAdmin,
    service: ReturnServiceDep,
) -> ReturnTransitionResponse:
    try:
        return_request = await service.mark_in_transit(
            return_id, tracking_number=request.tracking_number, changed_by=admin.id
        )
    except Exception as e:
        raise _to_http_exception(e, "mark_in_transit", admin, return_id=return_id) from e

    return _transition_response(return_request)


@router.post(
    "/{return_id}/confirm-received",
    response_model=ReturnTransitionResponse,
    summary="Confirm the returned goods arrived",
)
async def confirm_return_received(
    return_id: UUID,
    request: AdminNotesRequest,
    admin: CurrentAdmin,
    service: ReturnServiceDep,
) -> ReturnTransitionResponse:
    """
    Mark a return received and restock its variants.

    Restock and order sync failures are recorded for replay; the response
    still reports the committed transition.
    """
    try:
        return_request = await service.confirm_received(
            return_id, admin_notes=request.admin_notes, changed_by=admin.id
        )
    except Exception as e:
        raise _to_http_exception(e, "confirm_received", admin, return_id=return_id) from e

    return _transition_response(return_request)


@router.post(
    "/{return_id}/process-refund",
    response_model=ReturnTransitionResponse,
    summary="Refund a received return",
)
async def process_return_refund(
    return_id: UUID,
    request: AdminNotesRequest,
    admin: CurrentAdmin,
    service: ReturnServiceDep,
) -> ReturnTransitionResponse:
    try:
        return_request = await service.process_refund(
            return_id, admin_notes=request.admin_notes, changed_by=admin.id
        )
    except Exception as e:
        raise _to_http_exception(e, "process_refund", admin, return_id=return_id) from e

    return _transition_response(return_request)


@router.get(
    "/{return_id}/download-label",
    response_class=Response,
    summary="Download the return label",
    description="Proxies the label PDF from the carrier so its credentials stay server-side",
)
async def download_return_label(
    return_id: UUID,
    current_user: CurrentActiveUser,
    service: ReturnServiceDep,
) -> Response:
    try:
        label = await service.download_label(return_id, current_user)
    except Exception as e:
        raise _to_http_exception(e, "download_label", current_user, return_id=return_id) from e

    if label.content_type != "application/pdf":
        logger.info(
            "Carrier label served with unexpected content type",
            return_id=str(return_id),
            carrier_content_type=label.content_type,
        )

    return Response(
        content=label.content,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="retourlabel-{str(return_id)[:8]}.pdf"',
            "Cache-Control": "private, max-age=3600",
        },
    )
