"""
Registration Routes

CRUD over procedure registrations. The id is always "<type>-<name>" and
cannot change on update. Creating, updating and deleting a registration
also grants or revokes the invoke permission for its function.

Responses:
    POST   /registrations       201 registration | 400
    GET    /registrations       200 [registration]
    GET    /registrations/{id}  200 registration | 404
    PUT    /registrations/{id}  200 registration | 400 | 404
    DELETE /registrations/{id}  204 | 404
    invalid body: 400 {"error": "Invalid registration data", "details": [...]}
    anything else: 500 {"error": "Internal server error"}
"""

import logging

from fastapi import APIRouter, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from mcp_relay.registry import Registration, RegistrationRequest, registration_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/registrations")


def _invalid(error: ValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={
            "error": "Invalid registration data",
            "details": jsonable_encoder(error.errors(include_url=False, include_context=False)),
        },
    )


def _not_found(reg_id: str) -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": f"Registration {reg_id} not found"})


def _internal_error(action: str, error: Exception) -> JSONResponse:
    logger.error(f"Registration {action} failed: {error}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


async def _parse(request: Request) -> RegistrationRequest:
    body = await request.body()
    return RegistrationRequest.model_validate_json(body or b"{}")


@router.post("")
async def create_registration(request: Request):
    registry = request.app.state.bundle.registry
    invoker = request.app.state.bundle.invoker
    try:
        registration = Registration.from_request(await _parse(request))
    except ValidationError as e:
        return _invalid(e)

    try:
        await registry.put(registration)
        await invoker.grant_access(registration.id, registration.lambda_arn)
    except Exception as e:
        return _internal_error("create", e)

    logger.info(f"Registration created: {registration.id}")
    return JSONResponse(status_code=201, content=registration.to_wire())


@router.get("")
async def list_registrations(request: Request):
    try:
        registrations = await request.app.state.bundle.registry.list_all()
    except Exception as e:
        return _internal_error("list", e)
    return [r.to_wire() for r in registrations]


@router.get("/{reg_id}")
async def get_registration(reg_id: str, request: Request):
    try:
        registration = await request.app.state.bundle.registry.get(reg_id)
    except Exception as e:
        return _internal_error("get", e)
    if registration is None:
        return _not_found(reg_id)
    return registration.to_wire()


@router.put("/{reg_id}")
async def update_registration(reg_id: str, request: Request):
    registry = request.app.state.bundle.registry
    invoker = request.app.state.bundle.invoker
    try:
        update = await _parse(request)
    except ValidationError as e:
        return _invalid(e)

    if registration_id(update.type, update.name) != reg_id:
        return JSONResponse(status_code=400, content={"error": "Cannot change registration ID"})

    try:
        existing = await registry.get(reg_id)
        if existing is None:
            return _not_found(reg_id)

        registration = Registration.from_request(update)
        await registry.put(registration)

        if existing.lambda_arn != registration.lambda_arn:
            await invoker.revoke_access(reg_id)
            await invoker.grant_access(reg_id, registration.lambda_arn)
    except Exception as e:
        return _internal_error("update", e)

    logger.info(f"Registration updated: {reg_id}")
    return registration.to_wire()


@router.delete("/{reg_id}")
async def delete_registration(reg_id: str, request: Request):
    registry = request.app.state.bundle.registry
    invoker = request.app.state.bundle.invoker
    try:
        if not await registry.delete(reg_id):
            return _not_found(reg_id)
        await invoker.revoke_access(reg_id)
    except Exception as e:
        return _internal_error("delete", e)

    logger.info(f"Registration deleted: {reg_id}")
    return Response(status_code=204)
