from __future__ import annotations

from typing import List, NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from routers.dependencies import get_association_service
from schemas.associations import (
    AIContext,
    AssociationQuery,
    AssociationResult,
    AssociationStrength,
    AssociationType,
    ContextDepth,
    EntityType,
    ExplicitAssociationRef,
    parse_association_ref,
)
from schemas.requests.association import CreateAssociationRequest, UpdateAssociationRequest
from schemas.responses.association import AssociationWriteResponse, CounterUpdateResponse
from services.associations import AssociationService, AssociationWriteResult
from services.associations.errors import (
    AssociationError,
    AssociationNotFound,
    EntityNotFound,
    QueryFailed,
    SourceEntityUnresolved,
    UnsupportedAssociationType,
)

router = APIRouter()


def _raise_http(exc: AssociationError) -> NoReturn:
    if isinstance(exc, (EntityNotFound, AssociationNotFound, SourceEntityUnresolved)):
        raise HTTPException(status_code=404, detail=exc.message) from exc
    if isinstance(exc, UnsupportedAssociationType):
        raise HTTPException(status_code=400, detail=exc.message) from exc
    if isinstance(exc, QueryFailed):
        raise HTTPException(status_code=502, detail=exc.message) from exc
    raise HTTPException(status_code=500, detail=exc.message) from exc


def _to_response(result: AssociationWriteResult) -> AssociationWriteResponse:
    return AssociationWriteResponse(
        id=result.association_id,
        created=result.created,
        counter_updates=[
            CounterUpdateResponse(
                entity_type=update.entity_type.value,
                entity_id=update.entity_id,
                counter_key=update.counter_key,
                status=update.status,
                error=update.error,
            )
            for update in result.counter_updates
        ],
    )


@router.post(
    "/associations",
    summary="Create or update the association between two entities",
    response_model=AssociationWriteResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_association(
    request: CreateAssociationRequest,
    service: AssociationService = Depends(get_association_service),
) -> AssociationWriteResponse:
    try:
        result = await service.create_association(
            request.source_entity_type,
            request.source_entity_id,
            request.target_entity_type,
            request.target_entity_id,
            association_type=request.association_type,
            role=request.role,
            strength=request.strength,
            metadata=request.metadata,
        )
    except AssociationError as exc:
        _raise_http(exc)
    return _to_response(result)


@router.post(
    "/associations/bulk",
    summary="Create many associations, reusing existing pairs",
    response_model=List[AssociationWriteResponse],
    status_code=status.HTTP_201_CREATED,
)
async def bulk_create_associations(
    requests: List[CreateAssociationRequest],
    service: AssociationService = Depends(get_association_service),
) -> List[AssociationWriteResponse]:
    if not requests:
        raise HTTPException(status_code=400, detail="At least one association is required")
    try:
        results = await service.bulk_create_associations(requests)
    except AssociationError as exc:
        _raise_http(exc)
    return [_to_response(result) for result in results]


@router.get(
    "/associations/{entity_type}/{entity_id}",
    summary="List explicit and implicit associations for an entity",
    response_model=AssociationResult,
)
async def query_associations(
    entity_type: EntityType,
    entity_id: str,
    target_types: Optional[List[EntityType]] = Query(None, alias="targetTypes"),
    association_types: Optional[List[AssociationType]] = Query(None, alias="associationTypes"),
    strength: Optional[List[AssociationStrength]] = Query(None),
    include_metadata: bool = Query(True, alias="includeMetadata"),
    limit: Optional[int] = Query(None, ge=1),
    service: AssociationService = Depends(get_association_service),
) -> AssociationResult:
    query = AssociationQuery(
        entity_type=entity_type,
        entity_id=entity_id,
        target_types=target_types,
        association_types=association_types,
        strength=strength,
        include_metadata=include_metadata,
        limit=limit,
    )
    try:
        return await service.query_associations(query)
    except AssociationError as exc:
        _raise_http(exc)


@router.get(
    "/associations/{entity_type}/{entity_id}/context",
    summary="Direct and indirect associations digested for AI context",
    response_model=AIContext,
)
async def get_ai_context(
    entity_type: EntityType,
    entity_id: str,
    depth: ContextDepth = Query(ContextDepth.MEDIUM),
    service: AssociationService = Depends(get_association_service),
) -> AIContext:
    try:
        return await service.get_ai_context(entity_type, entity_id, depth)
    except AssociationError as exc:
        _raise_http(exc)


@router.patch(
    "/associations/{association_id}",
    summary="Update fields on an explicit association",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def update_association(
    association_id: str,
    request: UpdateAssociationRequest,
    service: AssociationService = Depends(get_association_service),
) -> Response:
    if not isinstance(parse_association_ref(association_id), ExplicitAssociationRef):
        raise HTTPException(
            status_code=400,
            detail="Implicit associations are edited through their source entity",
        )
    try:
        await service.update_association(
            association_id,
            association_type=request.association_type,
            role=request.role,
            strength=request.strength,
            metadata=request.metadata,
        )
    except AssociationError as exc:
        _raise_http(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete(
    "/associations/{association_id}",
    summary="Delete an explicit association or clear an implicit foreign key",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_association(
    association_id: str,
    service: AssociationService = Depends(get_association_service),
) -> Response:
    try:
        await service.delete_association(parse_association_ref(association_id))
    except AssociationError as exc:
        _raise_http(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
