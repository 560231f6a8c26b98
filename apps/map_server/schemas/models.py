"""Pydantic models for the map index HTTP API."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator


class PointGeometry(BaseModel):
    """GeoJSON point, ``[lng, lat]``."""

    type: Literal["Point"] = "Point"
    coordinates: List[float] = Field(..., description="Longitude, latitude in decimal degrees")

    @field_validator("coordinates")
    @classmethod
    def _validate_pair(cls, value: List[float]) -> List[float]:
        if len(value) != 2:
            raise ValueError("Point coordinates must be [lng, lat]")
        return value


class ClusterProperties(BaseModel):
    cluster: Literal[True] = True
    cluster_id: int
    point_count: int
    point_count_abbreviated: Union[int, str]


class Feature(BaseModel):
    type: Literal["Feature"] = "Feature"
    id: Optional[int] = Field(default=None, description="Cluster id, only set on clusters")
    geometry: PointGeometry
    properties: Dict[str, Any] = Field(default_factory=dict)


class FeatureCollection(BaseModel):
    type: Literal["FeatureCollection"] = "FeatureCollection"
    features: List[Feature]
    index_version: Optional[int] = Field(
        default=None, description="Index build the cluster ids belong to"
    )


class SearchHit(BaseModel):
    """One ranked search result. Point attributes are passed through."""

    type: str = Field(..., description="Result category, e.g. 'entity' or 'place'")
    id: str
    name: str
    coordinates: List[float]
    score: int

    model_config = {"extra": "allow"}


class ExpansionZoomResponse(BaseModel):
    cluster_id: int = Field(..., alias="clusterId")
    expansion_zoom: int = Field(..., alias="expansionZoom")
    index_version: int = Field(..., alias="indexVersion")

    model_config = {"populate_by_name": True}


class ReloadResponse(BaseModel):
    status: Literal["accepted"] = "accepted"
    serving_generation: Optional[int] = Field(default=None, alias="servingGeneration")

    model_config = {"populate_by_name": True}


class ErrorDetail(BaseModel):
    code: str
    message: str


class ErrorResponse(BaseModel):
    error: ErrorDetail
