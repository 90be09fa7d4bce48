"""Catalog store: the band, creator and video rows the sync orchestrator touches."""

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import UpsertFailedError
from app.db.models import Band, Creator, Video
from app.youtube.repository import as_utc
from app.youtube.source import VideoDetails

ENTITY_BAND = "band"
ENTITY_CREATOR = "creator"


@dataclass
class CatalogEntity:
    """A band or creator as seen by the orchestrator."""

    id: str
    kind: str
    name: str
    school_name: str | None
    youtube_channel_id: str | None
    is_active: bool
    is_featured: bool
    last_synced_at: datetime | None
    first_synced_at: datetime | None
    last_full_sync_at: datetime | None

    @property
    def search_queries(self) -> list[str]:
        if self.kind == ENTITY_BAND:
            return [
                f"{self.name} marching band",
                f"{self.school_name or self.name} band",
                f"{self.name} HBCU",
            ]
        return [
            self.name,
            f"{self.name} marching band",
            f"{self.name} HBCU",
        ]


def _to_entity(row: Band | Creator, kind: str) -> CatalogEntity:
    return CatalogEntity(
        id=row.id,
        kind=kind,
        name=row.name,
        school_name=getattr(row, "school_name", None),
        youtube_channel_id=row.youtube_channel_id,
        is_active=row.is_active,
        is_featured=row.is_featured,
        last_synced_at=as_utc(row.last_synced_at),
        first_synced_at=as_utc(row.first_synced_at),
        last_full_sync_at=as_utc(row.last_full_sync_at),
    )


class CatalogStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_entity(self, entity_id: str) -> CatalogEntity | None:
        """Look the id up as a band first, then as a creator."""
        async with self.session_factory() as session:
            band = await session.get(Band, entity_id)
            if band is not None:
                return _to_entity(band, ENTITY_BAND)
            creator = await session.get(Creator, entity_id)
            if creator is not None:
                return _to_entity(creator, ENTITY_CREATOR)
        return None

    async def upsert_video(self, entity: CatalogEntity, details: VideoDetails) -> bool:
        """Create or update a video by its YouTube id.

        Returns:
            True when a new row was created.

        Raises:
            UpsertFailedError: the row could not be written.
        """
        fields = {
            "title": details.title,
            "description": details.description,
            "thumbnail_url": details.thumbnail_url,
            "duration_seconds": details.duration_seconds,
            "published_at": details.published_at,
            "view_count": details.view_count,
            "like_count": details.like_count,
            "channel_id": details.channel_id,
            "channel_title": details.channel_title,
        }
        owner_column = "band_id" if entity.kind == ENTITY_BAND else "creator_id"

        try:
            async with self.session_factory() as session:
                result = await session.execute(select(Video).where(Video.youtube_id == details.youtube_id))
                video = result.scalar_one_or_none()
                created = video is None
                if created:
                    video = Video(youtube_id=details.youtube_id, **fields)
                    session.add(video)
                else:
                    for name, value in fields.items():
                        setattr(video, name, value)
                setattr(video, owner_column, entity.id)
                await session.commit()
                return created
        except SQLAlchemyError as exc:
            raise UpsertFailedError(details.youtube_id, str(exc)) from exc

    async def mark_synced(self, entity: CatalogEntity, now: datetime, full: bool) -> None:
        model = Band if entity.kind == ENTITY_BAND else Creator
        async with self.session_factory() as session:
            row = await session.get(model, entity.id)
            if row is None:
                return
            row.last_synced_at = now
            if row.first_synced_at is None:
                row.first_synced_at = now
            if full:
                row.last_full_sync_at = now
            await session.commit()

    async def active_entities_by_staleness(self) -> list[CatalogEntity]:
        """Active bands and creators, never-synced first, then oldest sync first."""
        async with self.session_factory() as session:
            bands = (await session.execute(select(Band).where(Band.is_active.is_(True)))).scalars().all()
            creators = (await session.execute(select(Creator).where(Creator.is_active.is_(True)))).scalars().all()

        entities = [_to_entity(row, ENTITY_BAND) for row in bands]
        entities += [_to_entity(row, ENTITY_CREATOR) for row in creators]
        entities.sort(key=lambda entity: (entity.last_synced_at is not None, entity.last_synced_at or datetime.min))
        return entities

    async def entities_needing_full_sync(self) -> list[CatalogEntity]:
        async with self.session_factory() as session:
            bands = (
                await session.execute(
                    select(Band).where(
                        Band.is_active.is_(True),
                        or_(Band.last_full_sync_at.is_(None), Band.first_synced_at.is_(None)),
                    )
                )
            ).scalars().all()
            creators = (
                await session.execute(
                    select(Creator).where(
                        Creator.is_active.is_(True),
                        or_(Creator.last_full_sync_at.is_(None), Creator.first_synced_at.is_(None)),
                    )
                )
            ).scalars().all()

        return [_to_entity(row, ENTITY_BAND) for row in bands] + [_to_entity(row, ENTITY_CREATOR) for row in creators]

    async def counts(self) -> tuple[int, int, int]:
        """Return (active entities, active entities synced at least once, videos)."""
        async with self.session_factory() as session:
            total = 0
            synced = 0
            for model in (Band, Creator):
                total += await session.scalar(select(func.count(model.id)).where(model.is_active.is_(True))) or 0
                synced += (
                    await session.scalar(
                        select(func.count(model.id)).where(
                            model.is_active.is_(True),
                            model.first_synced_at.is_not(None),
                        )
                    )
                    or 0
                )
            videos = await session.scalar(select(func.count(Video.id))) or 0
        return total, synced, videos
