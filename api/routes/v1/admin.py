"""
api/routes/v1/admin.py -- Administrative read endpoints and path table reload.

Routes:
  GET /api/v1/admin/identities/{id}   -- identity summary with roles
  GET /api/v1/admin/protected-paths   -- current protected path table
  PUT /api/v1/admin/protected-paths   -- replace the protected path table

Every route here goes through require_principal via the router-level
dependency. Role enforcement comes from the protected path table, not from
per-route checks: the default configuration protects /api/v1/admin with the
"admin" role, so the guard rejects non-admins before a handler runs.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import IdentityResponse, ProtectedPathsBody
from auth.dependencies import get_principal, require_principal
from auth.models import Principal
from auth.permissions import ProtectedPathTable
from auth.store import IdentityStore

logger = logging.getLogger("landinggate.api")

router = APIRouter(dependencies=[Depends(require_principal)])


@router.get("/admin/identities/{identity_id}", response_model=IdentityResponse)
def get_identity(request: Request, identity_id: int) -> IdentityResponse:
    """Look up any identity by id. 404 if it does not exist."""
    store: IdentityStore = request.app.state.identity_store
    identity = store.get_by_id(identity_id)
    if identity is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "Identity not found."},
        )
    return IdentityResponse.from_identity(identity, store.roles_for(identity_id))


@router.get("/admin/protected-paths", response_model=ProtectedPathsBody)
def list_protected_paths(request: Request) -> ProtectedPathsBody:
    table: ProtectedPathTable = request.app.state.path_table
    return ProtectedPathsBody(paths={prefix: sorted(roles) for prefix, roles in table.snapshot().items()})


@router.put("/admin/protected-paths", response_model=ProtectedPathsBody)
def replace_protected_paths(
    request: Request,
    body: ProtectedPathsBody,
    principal: Principal = Depends(get_principal),
) -> ProtectedPathsBody:
    """Swap in a new protected path table. Takes effect from the next request.

    A root ("/") entry is rejected with 400 and the current table is kept.
    """
    table: ProtectedPathTable = request.app.state.path_table
    try:
        table.reload(body.paths)
    except ValueError as exc:
        raise HTTPException(
            status_code=400,
            detail={"code": "invalid_path_table", "message": str(exc)},
        ) from exc
    logger.warning("Protected path table replaced by identity %s: %s", principal.identity.id, body.paths)
    return ProtectedPathsBody(paths={prefix: sorted(roles) for prefix, roles in table.snapshot().items()})
