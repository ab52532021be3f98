from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from .templates import TemplateRegistry

DEDUP_PREFIX = "dedup:"


@dataclass
class RenderRequest:
    template: str
    params: Dict[str, str]
    dedup_key: str
    file_name: str = field(default="")

    def __post_init__(self):
        if not self.file_name:
            self.file_name = f"{self.template}.pdf"


def dedup_key(template: str, declared: tuple, params: Mapping[str, str]) -> str:
    # declared order, so callers' parameter order never splits a job
    return template + "|" + "&".join(f"{p}={params[p]}" for p in declared)


class RequestDeduplicator:
    """Collapses identical render requests inside a time window onto one job id.

    The window starts when a job id is registered and is not extended by
    lookups.
    """

    def __init__(self, redis_client, registry: TemplateRegistry, window: int = 60):
        self.redis = redis_client
        self.registry = registry
        self.window = window

    def resolve(self, template: str, params: Mapping[str, str]) -> RenderRequest:
        spec = self.registry.require(template, params)
        return RenderRequest(
            template=template,
            params={k: str(v) for k, v in params.items()},
            dedup_key=dedup_key(template, spec.params, params),
        )

    async def lookup(self, request: RenderRequest) -> Optional[str]:
        return await self.redis.get(DEDUP_PREFIX + request.dedup_key)

    async def register(self, request: RenderRequest, job_id: str):
        await self.redis.set(DEDUP_PREFIX + request.dedup_key, job_id, ex=self.window)
