from fastapi import APIRouter, Depends, Request

from ..auth import role_validator
from ..auth.identity import SessionState
from ..auth.roles import Role
from ..dependencies import (
    GateContext,
    client_ip,
    get_app_state,
    get_session_state,
    require_role,
    require_session,
)
from ..schemas.access import AdminOverviewResponse, PermissionsResponse
from ..services.audit.recorder import audited
from ..state import AppState

router = APIRouter(tags=["access"])


@router.get("/me/permissions", response_model=PermissionsResponse)
async def my_permissions(
    request: Request,
    context: GateContext = Depends(require_session),
    session: SessionState = Depends(get_session_state),
    state: AppState = Depends(get_app_state),
) -> PermissionsResponse:
    async with audited(
        state.recorder,
        user_id=context.user.user_id,
        ip_address=client_ip(request),
        action="me.permissions",
    ):
        role_state = await state.resolver.resolve(session)
    return PermissionsResponse(
        user_id=context.user.user_id,
        role=role_state.role.value if role_state.role is not None else None,
        level=role_state.level,
        is_admin=role_state.is_admin,
        is_owner=role_state.is_owner,
    )


@router.post("/me/focus")
async def refresh_on_focus(
    context: GateContext = Depends(require_session),
    state: AppState = Depends(get_app_state),
) -> dict[str, bool]:
    return {"refreshed": await state.resolver.on_focus(context.user)}


@router.get("/admin/overview", response_model=AdminOverviewResponse)
async def admin_overview(
    request: Request,
    context: GateContext = Depends(require_role(Role.ADMIN)),
    state: AppState = Depends(get_app_state),
) -> AdminOverviewResponse:
    async with audited(
        state.recorder,
        user_id=context.user.user_id,
        ip_address=client_ip(request),
        action="admin.overview",
    ):
        role = context.role_state.role if context.role_state is not None else None
    return AdminOverviewResponse(
        user_id=context.user.user_id,
        role=role.value if role is not None else None,
    )


@router.get("/owner/settings", response_model=AdminOverviewResponse)
async def owner_settings(
    request: Request,
    context: GateContext = Depends(require_role(Role.OWNER)),
    state: AppState = Depends(get_app_state),
) -> AdminOverviewResponse:
    # The gate may answer from a cached role; owner actions re-check at the source.
    async with audited(
        state.recorder,
        user_id=context.user.user_id,
        ip_address=client_ip(request),
        action="owner.settings",
    ):
        role = await role_validator.require_role(
            state.resolver.invoker, context.user.user_id, Role.OWNER
        )
    return AdminOverviewResponse(
        user_id=context.user.user_id,
        role=role.value if role is not None else None,
    )
