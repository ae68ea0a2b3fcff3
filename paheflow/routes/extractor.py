import logging
from typing import Annotated, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import Field

from paheflow.extractors.base import ExtractorError, LookupMiss
from paheflow.extractors.factory import ExtractorFactory
from paheflow.schemas import EpisodeDescriptor, ExtractionReport, GenericParams
from paheflow.utils.http_utils import DownloadError, ProxyRequestHeaders, get_proxy_headers
from paheflow.utils.session import SessionStore

extractor_router = APIRouter()
logger = logging.getLogger(__name__)


class StreamsParams(GenericParams):
    destination: str = Field(..., description="The episode descriptor to resolve.", alias="d")
    on_error: Optional[Literal["abort", "skip"]] = Field(
        None, description="Whether a failed quality aborts the whole extraction or is reported and skipped."
    )
    concurrent: Optional[bool] = Field(None, description="Resolve every quality in parallel.")


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.session_store


def _status_for(error: ExtractorError) -> int:
    if isinstance(error, LookupMiss):
        return 404
    return 502


@extractor_router.get("/streams", response_model=ExtractionReport)
async def extract_streams(
    params: Annotated[StreamsParams, Query()],
    proxy_headers: Annotated[ProxyRequestHeaders, Depends(get_proxy_headers)],
    session_store: Annotated[SessionStore, Depends(get_session_store)],
):
    """Resolve every playable stream of an episode descriptor."""
    extractor = ExtractorFactory.get_extractor(
        "AnimePahe",
        proxy_headers.request,
        session=session_store,
        on_quality_error=params.on_error,
        resolve_concurrently=params.concurrent,
    )
    try:
        return await extractor.extract_report(params.destination)
    except DownloadError as e:
        logger.error(f"Extraction failed: {str(e)}")
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except ExtractorError as e:
        logger.error(f"Extraction failed ({e.kind.value}): {str(e)}")
        raise HTTPException(status_code=_status_for(e), detail=str(e))
    finally:
        await extractor.aclose()


@extractor_router.get("/episodes", response_model=List[EpisodeDescriptor])
async def list_episodes(
    anime_id: Annotated[str, Query(description="Anime id, or a link ending in one.")],
    proxy_headers: Annotated[ProxyRequestHeaders, Depends(get_proxy_headers)],
    session_store: Annotated[SessionStore, Depends(get_session_store)],
):
    """List a descriptor for every episode of an anime."""
    extractor = ExtractorFactory.get_extractor("AnimePahe", proxy_headers.request, session=session_store)
    try:
        return await extractor.list_episodes(anime_id)
    finally:
        await extractor.aclose()
