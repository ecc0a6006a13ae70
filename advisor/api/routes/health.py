from fastapi import APIRouter, Depends

from advisor.api.container import ServiceContainer
from advisor.api.dependencies import get_container
from advisor.domain.models import CircuitState
from advisor.domain.schemas.market_data import CircuitStateSchema, ProvidersHealthSchema

router = APIRouter()


@router.get("")
async def health():
    return {"status": "ok"}


@router.get("/providers", response_model=ProvidersHealthSchema)
async def providers_health(container: ServiceContainer = Depends(get_container)):
    snapshots = container.market_data.breakers.snapshots()
    open_count = sum(1 for s in snapshots if s.state == CircuitState.OPEN)
    if open_count == 0:
        status = "healthy"
    elif open_count < len(snapshots):
        status = "degraded"
    else:
        status = "unavailable"
    return ProvidersHealthSchema(
        status=status,
        providers=[CircuitStateSchema.model_validate(s) for s in snapshots],
    )
