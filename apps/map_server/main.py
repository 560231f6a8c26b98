"""FastAPI server exposing map clustering and name search."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.errors import MapServiceError, MissingParameter
from src.service import MapQueryService
from src.tools.config_loader import ServiceSettings

from .schemas.models import (
    ErrorResponse,
    ExpansionZoomResponse,
    FeatureCollection,
    ReloadResponse,
    SearchHit,
)
from .tools.features import (
    nodes_to_collection,
    parse_bbox,
    parse_optional_int,
    parse_zoom,
    points_to_collection,
    require,
)

logger = logging.getLogger(__name__)

_ERROR_RESPONSES: Dict[int | str, Dict[str, Any]] = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def _service(request: Request) -> MapQueryService:
    return request.app.state.service


def create_app(service: Optional[MapQueryService] = None) -> FastAPI:
    """Create the app. Without ``service`` one is built from the env profile at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "service", None) is None:
            app.state.service = MapQueryService.from_settings(ServiceSettings.from_env())
        app.state.service.warm()
        yield
        app.state.service.close()

    app = FastAPI(title="Map Index Server", version="1.0.0", lifespan=lifespan)
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.exception_handler(MapServiceError)
    async def map_service_error_handler(request: Request, exc: MapServiceError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc, exc_info=exc.__cause__ or exc)
        else:
            logger.warning("%s %s rejected (%s): %s", request.method, request.url.path, exc.code, exc)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.get("/health")
    async def health_check(request: Request) -> Dict[str, Any]:
        return _service(request).status()

    @app.get(
        "/clusters",
        response_model=FeatureCollection,
        response_model_exclude_none=True,
        responses=_ERROR_RESPONSES,
    )
    def clusters(
        request: Request,
        bbox: Optional[str] = Query(default=None, description="west,south,east,north"),
        zoom: Optional[str] = Query(default=None),
        expand: Optional[str] = Query(default=None, description="Cluster id to expand into leaves"),
        limit: Optional[str] = Query(default=None, description="Maximum leaves when expanding"),
        offset: Optional[str] = Query(default=None, description="Leaves to skip when expanding"),
    ) -> Dict[str, Any]:
        service = _service(request)
        zoom_level = parse_zoom(require(zoom, "zoom"))

        if expand:
            page = service.expand(
                expand,
                limit=parse_optional_int(limit, "limit"),
                offset=parse_optional_int(offset, "offset") or 0,
            )
            collection = points_to_collection(page.points, index_version=page.index_version)
        else:
            bounds = parse_bbox(require(bbox, "bbox"))
            page = service.clusters(bounds, zoom_level)
            collection = nodes_to_collection(page.nodes, index_version=page.index_version)

        return collection.model_dump(exclude_none=True)

    @app.get(
        "/clusters/{cluster_id}/children",
        response_model=FeatureCollection,
        response_model_exclude_none=True,
        responses=_ERROR_RESPONSES,
    )
    def cluster_children(request: Request, cluster_id: str) -> Dict[str, Any]:
        page = _service(request).children(cluster_id)
        return nodes_to_collection(page.nodes, index_version=page.index_version).model_dump(exclude_none=True)

    @app.get(
        "/clusters/{cluster_id}/expansion-zoom",
        response_model=ExpansionZoomResponse,
        responses=_ERROR_RESPONSES,
    )
    def cluster_expansion_zoom(request: Request, cluster_id: str) -> Dict[str, Any]:
        index_version, zoom = _service(request).expansion_zoom(cluster_id)
        response = ExpansionZoomResponse(
            cluster_id=int(cluster_id),
            expansion_zoom=zoom,
            index_version=index_version,
        )
        return response.model_dump(by_alias=True)

    @app.get("/search", response_model=List[SearchHit], responses=_ERROR_RESPONSES)
    def search_names(
        request: Request,
        q: Optional[str] = Query(default=None, description="Free-text name query"),
    ) -> List[Dict[str, Any]]:
        if q is None:
            raise MissingParameter("Missing q parameter")
        results = _service(request).search(q)
        return [entry.to_dict() for entry in results]

    @app.post("/admin/reload", status_code=202, response_model=ReloadResponse)
    def reload_index(request: Request) -> Dict[str, Any]:
        service = _service(request)
        serving = service.status().get("generation")
        service.reload()
        return ReloadResponse(serving_generation=serving).model_dump(by_alias=True)

    return app


app = create_app()


__all__ = ["app", "create_app"]


if __name__ == "__main__":  # pragma: no cover
    import uvicorn

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(app, host="0.0.0.0", port=8000)
