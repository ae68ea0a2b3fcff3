import asyncio
import logging
import re
from typing import List, Optional, Tuple, Union

import httpx
from pydantic import ValidationError

from paheflow.configs import settings
from paheflow.const import DIRECT_MARKER, PAGED_MARKER, SERVER_LABEL
from paheflow.extractors.base import BaseExtractor, ExtractorError, LookupMiss, ParseError
from paheflow.extractors.kwik import KwikResolver
from paheflow.schemas import (
    EpisodeDescriptor,
    ExtractionReport,
    FailurePolicy,
    QualityFailure,
    QualityLink,
    ReleasePage,
    StreamCandidate,
)
from paheflow.utils.http_utils import DownloadError, HttpSession
from paheflow.utils.session import SessionStore

logger = logging.getLogger(__name__)

PAGED_RE = re.compile(r"&ep=(\d+)" + re.escape(PAGED_MARKER))
QUALITY_SUFFIX_RE = re.compile(r"(\d{3,4})\s*[pP]?\s*$")
QUALITY_ANYWHERE_RE = re.compile(r"(\d{3,4})[pP]")


def get_quality_from_name(name: str) -> str:
    """Pixel height named by a quality key such as ``"720"``, ``"1080p"`` or ``"BD 720p"``."""
    match = QUALITY_SUFFIX_RE.search(name) or QUALITY_ANYWHERE_RE.search(name)
    return match.group(1) if match else "unknown"


class AnimePaheExtractor(BaseExtractor):
    """AnimePahe episode extractor.

    Descriptors come in three shapes:

    - ``<links api url>!!TRUE!!``: the quality listing URL itself.
    - ``<release api url>&ep=<n>!!FALSE!!``: a release page that must be
      searched for episode ``n`` before its listing URL is known.
    - anything else is fetched as a quality listing as is.

    Every quality in the listing is walked through the ad-gate and kwik to
    a playable URL. The session store is shared by every call made through
    the same extractor.
    """

    def __init__(
        self,
        request_headers: dict,
        client: Optional[HttpSession] = None,
        session: Optional[SessionStore] = None,
        main_url: Optional[str] = None,
        on_quality_error: Optional[FailurePolicy] = None,
        resolve_concurrently: Optional[bool] = None,
    ):
        super().__init__(request_headers, client)
        self.main_url = (main_url or settings.animepahe_url).rstrip("/")
        self.session = session or SessionStore(self.main_url)
        self.resolver = KwikResolver(self.client, self.session)
        self.on_quality_error = on_quality_error or settings.on_quality_error
        self.resolve_concurrently = (
            settings.resolve_concurrently if resolve_concurrently is None else resolve_concurrently
        )
        self.api_headers = {"referer": f"{self.main_url}/"}

    def links_url(self, anime_id: Union[int, str], session: str) -> str:
        return f"{self.main_url}/api?m=links&id={anime_id}&session={session}&p=kwik"

    def release_url(self, anime_id: Union[int, str], page: int = 1) -> str:
        return f"{self.main_url}/api?m=release&id={anime_id}&sort=episode_asc&page={page}"

    async def _get_json(self, url: str):
        response = await self._make_request(url, headers=self.api_headers)
        try:
            return response.json()
        except ValueError as e:
            raise ParseError(f"Expected JSON from {url}: {e}") from e

    async def resolve_listing_url(self, descriptor: str) -> str:
        """Turn a descriptor into the URL of its quality listing."""
        if DIRECT_MARKER in descriptor:
            return descriptor.replace(DIRECT_MARKER, "")

        match = PAGED_RE.search(descriptor)
        if match:
            return await self.lookup_episode(PAGED_RE.sub("", descriptor), int(match.group(1)))

        return descriptor

    async def lookup_episode(self, release_url: str, episode: int) -> str:
        payload = await self._get_json(release_url)
        try:
            page = ReleasePage.model_validate(payload)
        except ValidationError as e:
            raise ParseError(f"Unexpected release page layout at {release_url}: {e}") from e

        for entry in page.data:
            if entry.episode == episode:
                return self.links_url(entry.anime_id, entry.session)
        raise LookupMiss(f"Episode {episode} not found on {release_url}", episode=episode)

    async def fetch_qualities(self, listing_url: str) -> List[Tuple[str, QualityLink]]:
        payload = await self._get_json(listing_url)
        if isinstance(payload, dict) and isinstance(payload.get("data"), list):
            groups = payload["data"]
        else:
            groups = [payload]

        qualities = []
        for group in groups:
            if not isinstance(group, dict):
                raise ParseError(f"Unexpected quality listing entry at {listing_url}: {group!r}")
            for key, value in group.items():
                try:
                    qualities.append((key, QualityLink.model_validate(value)))
                except ValidationError as e:
                    raise ParseError(f"Quality {key!r} at {listing_url} has no usable link: {e}") from e
        return qualities

    async def resolve_quality(self, key: str, link: QualityLink) -> StreamCandidate:
        final_url, referer = await self.resolver.resolve_stream(link.kwik_adfly)
        return StreamCandidate(
            server_label=SERVER_LABEL,
            quality_label=get_quality_from_name(key),
            audio_label=link.audio or settings.default_audio,
            final_url=final_url,
            quality_key=key,
            referer=referer,
        )

    async def _resolve_all(self, qualities: List[Tuple[str, QualityLink]]) -> list:
        abort = self.on_quality_error == "abort"
        if self.resolve_concurrently:
            await self.resolver.open_session()
            tasks = [asyncio.ensure_future(self.resolve_quality(key, link)) for key, link in qualities]
            if not abort:
                return await asyncio.gather(*tasks, return_exceptions=True)
            try:
                return await asyncio.gather(*tasks)
            except BaseException:
                # gather leaves the siblings of a failed task running.
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise

        results = []
        for key, link in qualities:
            try:
                results.append(await self.resolve_quality(key, link))
            except (ExtractorError, DownloadError, httpx.HTTPError) as e:
                if abort:
                    raise
                results.append(e)
        return results

    async def extract_report(self, descriptor: str) -> ExtractionReport:
        listing_url = await self.resolve_listing_url(descriptor)
        qualities = await self.fetch_qualities(listing_url)
        results = await self._resolve_all(qualities)

        report = ExtractionReport()
        for (key, _), result in zip(qualities, results):
            if isinstance(result, StreamCandidate):
                report.candidates.append(result)
                continue
            if self.on_quality_error == "abort" or not isinstance(
                result, (ExtractorError, DownloadError, httpx.HTTPError)
            ):
                raise result
            kind = result.kind.value if isinstance(result, ExtractorError) else "transport"
            logger.warning("Skipping quality %s of %s: %s", key, listing_url, result)
            report.failures.append(QualityFailure(quality=key, kind=kind, message=str(result)))
        return report

    async def extract(self, url: str, **kwargs) -> List[StreamCandidate]:
        """Extract one stream candidate per quality listed for the episode descriptor ``url``."""
        report = await self.extract_report(url)
        return report.candidates

    async def list_episodes(self, anime: Union[int, str]) -> List[EpisodeDescriptor]:
        """
        Build a descriptor for every episode of an anime.

        ``anime`` is an anime id or a link ending in one (``.../a/<id>?slug=...``).
        When the whole release list fits on one page the descriptors point
        straight at each episode's quality listing; otherwise they point at the
        release page holding the episode. Failures give an empty list.
        """
        anime_id = str(anime).rstrip("/").split("/")[-1].split("?")[0]
        try:
            page = ReleasePage.model_validate(await self._get_json(self.release_url(anime_id)))
        except (ExtractorError, DownloadError, ValidationError) as e:
            logger.warning("Could not list episodes of anime %s: %s", anime_id, e)
            return []

        if page.last_page == 1 and page.per_page > page.total:
            return [
                EpisodeDescriptor(
                    descriptor=self.links_url(entry.anime_id, entry.session) + DIRECT_MARKER,
                    episode=entry.episode,
                    title=entry.title or f"Episode {entry.episode}",
                    snapshot=entry.snapshot or None,
                    created_at=entry.created_at or None,
                )
                for entry in page.data
            ]

        if page.per_page <= 0:
            return []
        listed = min(page.total, page.last_page * page.per_page)
        return [
            EpisodeDescriptor(
                descriptor=f"{self.release_url(anime_id, (number - 1) // page.per_page + 1)}&ep={number}{PAGED_MARKER}",
                episode=number,
            )
            for number in range(1, listed + 1)
        ]


def extract_streams(descriptor: str, request_headers: Optional[dict] = None, **kwargs) -> List[StreamCandidate]:
    """Blocking entry point: resolve every stream of ``descriptor`` on a fresh event loop."""

    async def run() -> List[StreamCandidate]:
        extractor = AnimePaheExtractor(request_headers or {}, **kwargs)
        try:
            return await extractor.extract(descriptor)
        finally:
            await extractor.aclose()

    return asyncio.run(run())
