from fastapi import APIRouter

router = APIRouter()

HEALTHY = {"status": "ok"}


@router.api_route("/", methods=["GET", "HEAD"])
@router.api_route("/healthz", methods=["GET", "HEAD"])
async def healthz() -> dict[str, str]:
    return HEALTHY
