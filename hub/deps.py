from __future__ import annotations

from fastapi import Request

from hub.config import Settings
from hub.realtime import ChangeBus
from lifecycle.graph import TransitionGraph


def get_bus(request: Request) -> ChangeBus:
    return request.app.state.bus


def get_graph(request: Request) -> TransitionGraph:
    return request.app.state.graph


def get_settings(request: Request) -> Settings:
    return request.app.state.settings
