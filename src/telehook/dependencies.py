from functools import lru_cache

from fastapi import Depends, Request

from telehook.capture import CaptureSessionManager
from telehook.config import Settings
from telehook.processing import WebhookProcessor
from telehook.services import Services
from telehook.stats import StatsAggregator


@lru_cache
def get_settings() -> Settings:
    return Settings()


async def get_services(request: Request) -> Services:
    return request.app.state.services


async def get_processor(services: Services = Depends(get_services)) -> WebhookProcessor:
    return services.processor


async def get_captures(services: Services = Depends(get_services)) -> CaptureSessionManager:
    return services.captures


async def get_stats(services: Services = Depends(get_services)) -> StatsAggregator:
    return services.stats
