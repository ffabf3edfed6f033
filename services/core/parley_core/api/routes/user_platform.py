"""Platform identity API routes.

Provides endpoints for:
- GET /user-platform - Stored platform identities of the customer
- POST /user-platform/fetch - Refresh identities from every connection
- GET /integrations/import-new - Read the import-new preference
- POST /integrations/import-new - Set the import-new preference
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from parley_core.api.deps import CurrentCustomer, DBSession, Gateway
from parley_core.api.schemas.user_platform import (
    ImportNewResponse,
    ImportNewUpdateRequest,
    ImportNewUpdateResponse,
    PlatformFetchResponse,
    PlatformFetchResultResponse,
    UserPlatformListResponse,
    UserPlatformResponse,
)
from parley_core.domain.services.user_platform import (
    NoPlatformsConnectedError,
    UserPlatformService,
)
from parley_core.providers.base import GatewayAuthError, GatewayError

router = APIRouter(tags=["user-platform"])


def get_user_platform_service(db: DBSession) -> UserPlatformService:
    """Get the platform identity service (no gateway)."""
    return UserPlatformService(db=db)


UserPlatformServiceDep = Annotated[UserPlatformService, Depends(get_user_platform_service)]


@router.get("/user-platform", response_model=UserPlatformListResponse)
async def list_user_platforms(
    customer: CurrentCustomer,
    service: UserPlatformServiceDep,
):
    """Stored platform identities of the customer."""
    platforms = service.list_for_customer(customer.id)
    return UserPlatformListResponse(
        user_platforms=[UserPlatformResponse.model_validate(p) for p in platforms],
        total=len(platforms),
    )


@router.post("/user-platform/fetch", response_model=PlatformFetchResponse)
async def fetch_user_platforms(
    customer: CurrentCustomer,
    db: DBSession,
    gateway: Gateway,
):
    """Refresh the customer's identity on every connected platform."""
    service = UserPlatformService(db=db, gateway=gateway)

    try:
        results = await service.fetch_all(customer.id)
    except NoPlatformsConnectedError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e),
        )
    except GatewayAuthError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
        )
    except GatewayError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to fetch user platform info: {e}",
        )
    db.commit()

    return PlatformFetchResponse(
        results=[
            PlatformFetchResultResponse(
                platform_id=r.platform_id,
                platform_name=r.platform_name,
                success=r.success,
                external_user_id=r.external_user_id,
                external_user_name=r.external_user_name,
                external_user_email=r.external_user_email,
                error=r.error,
            )
            for r in results
        ],
        total_processed=len(results),
        successful=sum(1 for r in results if r.success),
    )


@router.get("/integrations/import-new", response_model=ImportNewResponse)
async def get_import_new(
    customer: CurrentCustomer,
    service: UserPlatformServiceDep,
    platform_id: Annotated[str, Query(alias="platformId", min_length=1)],
):
    """Whether new chats from a platform are imported by the webhook."""
    import_new, exists = service.get_import_new(customer.id, platform_id)
    return ImportNewResponse(platform_id=platform_id, import_new=import_new, exists=exists)


@router.post("/integrations/import-new", response_model=ImportNewUpdateResponse)
async def set_import_new(
    request: ImportNewUpdateRequest,
    customer: CurrentCustomer,
    db: DBSession,
    service: UserPlatformServiceDep,
):
    """Set whether new chats from a platform are imported by the webhook."""
    service.set_import_new(customer.id, request.platform_id, request.import_new)
    db.commit()

    return ImportNewUpdateResponse(
        platform_id=request.platform_id,
        import_new=request.import_new,
        message=f"Import new setting updated to {str(request.import_new).lower()}",
    )
