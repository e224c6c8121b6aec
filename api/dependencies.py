"""Accessors for the per-application services stored on ``app.state``."""

from typing import Any, Dict

from fastapi import Request

from ecotips import EcoTipGenerator
from materials import MaterialsManager
from notifications import ConnectionRegistry
from pickups import CollectionManager
from storage import Storage


def get_storage(request: Request) -> Storage:
    return request.app.state.storage


def get_registry(request: Request) -> ConnectionRegistry:
    return request.app.state.registry


def get_settings(request: Request) -> Dict[str, Any]:
    return request.app.state.settings


def get_collection_manager(request: Request) -> CollectionManager:
    return request.app.state.collections


def get_materials_manager(request: Request) -> MaterialsManager:
    return request.app.state.materials


def get_tip_generator(request: Request) -> EcoTipGenerator:
    return request.app.state.ecotips


__all__ = [
    'get_storage', 'get_registry', 'get_settings', 'get_collection_manager',
    'get_materials_manager', 'get_tip_generator'
]
