from fastapi import APIRouter, Depends, Header, HTTPException, Query, status

from support_directory.core.config import Settings, get_settings
from support_directory.core.security import admin_key_matches
from support_directory.schemas.directory import DirectoryOut
from support_directory.services.directory import DirectoryBuildError
from support_directory.services.engine import get_engine
from support_directory.services.row_store import RowStoreError

router = APIRouter()


@router.get("", response_model=DirectoryOut)
async def get_directory(
    engine=Depends(get_engine),
    settings: Settings = Depends(get_settings),
    refresh: bool = Query(default=False),
    no_cache: bool = Query(default=False, alias="noCache"),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> DirectoryOut:
    if (refresh or no_cache) and not admin_key_matches(settings, x_api_key):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"refresh and noCache require a valid {settings.admin_api_key_header}",
        )

    if refresh:
        engine.runner.trigger(force=True)

    try:
        response, refreshed = await engine.get_directory(bypass=no_cache)
    except (DirectoryBuildError, RowStoreError) as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc

    return DirectoryOut.from_response(response, refresh=refreshed)
