from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from ..errors import UnavailableError
from ..metrics import registry

router = APIRouter(tags=["ops"])


@router.get("/healthz", summary="ライブネス確認")
def healthz() -> dict[str, str]:
    """Process is up; does not touch storage."""
    return {"status": "ok"}


@router.get("/readyz", summary="レディネス確認（ストレージ疎通）")
def readyz(request: Request) -> JSONResponse:
    """Probe the configured store with a cheap aggregate read.

    ストレージに到達できない場合は 503 を返し、詳細はログのみに残す。
    """
    store = request.app.state.store
    try:
        store.stats()
    except UnavailableError:
        return JSONResponse(status_code=503, content={"status": "unavailable"})
    return JSONResponse(content={"status": "ready", "backend": type(store).__name__})


@router.get("/metrics", summary="ルート別のレイテンシ・ステータス集計")
def metrics() -> JSONResponse:
    return JSONResponse(content={"paths": registry.snapshot()})
