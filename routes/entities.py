# routes/entities.py
import asyncio
import logging
from typing import Any, Dict, List, Type

from fastapi import APIRouter, Body, Depends, Request

import config
from db.connection import ConnectionManager
from errors import OperationTimeout
from models.entity import Entity, EntityKind, SearchResult
from repositories.entity_repository import EntityRepository

logger = logging.getLogger(__name__)


def get_connection_manager(request: Request) -> ConnectionManager:
    return request.app.state.connections


async def run_with_timeout(operation, description: str):
    try:
        return await asyncio.wait_for(operation, timeout=config.REQUEST_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        logger.error(f"{description} exceeded {config.REQUEST_TIMEOUT_SECONDS}s")
        raise OperationTimeout() from None


def build_entity_router(kind: EntityKind, model: Type[Entity], prefix: str) -> APIRouter:
    """Routes for one entity kind: list, create, search, get, update, delete."""
    router = APIRouter(prefix=prefix, tags=[kind.collection])

    def get_repository(connections: ConnectionManager = Depends(get_connection_manager)) -> EntityRepository:
        return EntityRepository(kind, connections, model)

    @router.get("", response_model=List[model])
    async def list_entities(repo: EntityRepository = Depends(get_repository)):
        return await run_with_timeout(repo.list_all(), f"GET {prefix}")

    @router.post("", response_model=model, status_code=201)
    async def create_entity(
        body: Dict[str, Any] = Body(...),
        repo: EntityRepository = Depends(get_repository),
    ):
        return await run_with_timeout(repo.create(body), f"POST {prefix}")

    # Declared before /{id} so "search" is never taken for an id
    @router.get("/search", response_model=List[SearchResult])
    async def search_entities(q: str = "", repo: EntityRepository = Depends(get_repository)):
        logger.info(f"Searching {kind.collection} for q={q!r}")
        return await run_with_timeout(repo.search(q), f"GET {prefix}/search")

    @router.get("/{id}", response_model=model)
    async def get_entity(id: str, repo: EntityRepository = Depends(get_repository)):
        return await run_with_timeout(repo.get_by_id(id), f"GET {prefix}/{id}")

    @router.put("/{id}", response_model=model)
    async def update_entity(
        id: str,
        body: Dict[str, Any] = Body(...),
        repo: EntityRepository = Depends(get_repository),
    ):
        return await run_with_timeout(repo.update(id, body), f"PUT {prefix}/{id}")

    @router.delete("/{id}")
    async def delete_entity(id: str, repo: EntityRepository = Depends(get_repository)):
        deleted = await run_with_timeout(repo.delete_by_id(id), f"DELETE {prefix}/{id}")
        return {"message": f"{kind.label} deleted successfully", "id": deleted.id}

    return router
