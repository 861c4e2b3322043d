from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from edu_console.core.errors import PersistenceFailed, StoreError
from edu_console.mux.urls import video_locator
from edu_console.pipeline.duration import DurationEstimate
from edu_console.pipeline.upload import AssetRef, ResolvedAsset
from edu_console.store.base import RelationalStore, Row

logger = logging.getLogger(__name__)

VIDEO_URL_COLUMN = "video_url"
ASSET_ID_COLUMN = "mux_asset_id"
STREAM_ID_COLUMN = "mux_playback_id"
DURATION_COLUMN = "duration_seconds"
SETTINGS_COLUMN = "settings"


@dataclass(frozen=True)
class TableProfile:
    name: str
    # Columns every schema version of the table has had.
    minimal_columns: tuple[str, ...]
    # Columns that identify "the same logical row" for the follow-up update.
    match_columns: tuple[str, ...]
    order_column: str = "created_at"


COURSES = TableProfile(
    name="courses",
    minimal_columns=("title", "description", "category", "price", "image_url"),
    match_columns=("title", "description"),
)
CLASSES = TableProfile(
    name="classes",
    minimal_columns=("course_id", "title", "description", "order_index", "is_free", "image_url"),
    match_columns=("course_id", "title"),
)
TABLE_PROFILES: dict[str, TableProfile] = {p.name: p for p in (COURSES, CLASSES)}


def get_table_profile(name: str) -> TableProfile:
    try:
        return TABLE_PROFILES[(name or "").strip().lower()]
    except KeyError:
        raise ValueError(f"Unsupported table: {name}") from None


@dataclass(frozen=True)
class VideoRecord:
    video_url: str
    asset_id: str | None
    stream_id: str | None
    duration_seconds: int

    @classmethod
    def build(cls, *, asset: AssetRef, stream_id: str | None, duration: DurationEstimate) -> "VideoRecord":
        asset_id = asset.asset_id if isinstance(asset, ResolvedAsset) else None
        # Stream id once known, else asset id, else the upload handle: always re-resolvable.
        target = stream_id or asset_id or getattr(asset, "upload_handle", None)
        return cls(
            video_url=video_locator(str(target)),
            asset_id=asset_id,
            stream_id=stream_id,
            duration_seconds=duration.seconds,
        )

    def video_columns(self) -> dict[str, Any]:
        return {
            VIDEO_URL_COLUMN: self.video_url,
            ASSET_ID_COLUMN: self.asset_id,
            STREAM_ID_COLUMN: self.stream_id,
        }


@dataclass(frozen=True)
class CommitDraft:
    """Form fields for the target table plus the video data the pipeline produced."""

    fields: dict[str, Any]
    video: VideoRecord
    settings: dict[str, Any] | None = None


def full_record(draft: CommitDraft, profile: TableProfile) -> dict[str, Any]:
    record = {**draft.fields, **draft.video.video_columns(), DURATION_COLUMN: draft.video.duration_seconds}
    if draft.settings is not None:
        record[SETTINGS_COLUMN] = draft.settings
    return record


def without_settings_record(draft: CommitDraft, profile: TableProfile) -> dict[str, Any]:
    return {**draft.fields, **draft.video.video_columns(), DURATION_COLUMN: draft.video.duration_seconds}


def minimal_record(draft: CommitDraft, profile: TableProfile) -> dict[str, Any]:
    return {k: v for k, v in draft.fields.items() if k in profile.minimal_columns}


CommitStrategy = tuple[str, Callable[[CommitDraft, TableProfile], dict[str, Any]]]

# Tried in order; only a schema mismatch moves on to the next one.
COMMIT_STRATEGIES: tuple[CommitStrategy, ...] = (
    ("full", full_record),
    ("without_settings", without_settings_record),
    ("minimal", minimal_record),
)


@dataclass(frozen=True)
class CommitResult:
    table: str
    row: Row
    strategy: str | None
    reused_existing: bool = False
    video_fields_applied: bool = False
    attempts: list[str] = field(default_factory=list)

    @property
    def row_id(self) -> Any:
        return self.row.get("id")


class PersistenceCommitter:
    def __init__(self, store: RelationalStore, *, strategies: tuple[CommitStrategy, ...] = COMMIT_STRATEGIES):
        if not strategies:
            raise ValueError("at least one commit strategy is required")
        self._store = store
        self._strategies = strategies

    async def commit(self, draft: CommitDraft, table: str | TableProfile) -> CommitResult:
        profile = table if isinstance(table, TableProfile) else get_table_profile(table)

        existing = await self._find_existing(draft, profile)
        if existing is not None:
            logger.info("Reusing existing %s row %s for %s", profile.name, existing.get("id"), draft.video.video_url)
            row, strategy, attempts = existing, None, []
            applied = await self._apply_video_fields(draft, profile, row_id=existing.get("id"))
        else:
            row, strategy, attempts = await self._insert_cascade(draft, profile)
            applied = await self._apply_video_fields(
                draft,
                profile,
                row_id=row.get("id"),
                video_written=VIDEO_URL_COLUMN in row,
            )
        return CommitResult(
            table=profile.name,
            row=row,
            strategy=strategy,
            reused_existing=existing is not None,
            video_fields_applied=applied,
            attempts=attempts,
        )

    def _match(self, draft: CommitDraft, profile: TableProfile) -> dict[str, Any]:
        return {c: draft.fields.get(c) for c in profile.match_columns}

    def _identity(self, draft: CommitDraft) -> dict[str, Any]:
        if draft.video.asset_id:
            return {ASSET_ID_COLUMN: draft.video.asset_id}
        return {VIDEO_URL_COLUMN: draft.video.video_url}

    async def _find_existing(self, draft: CommitDraft, profile: TableProfile) -> Row | None:
        # A double submit of the same upload must not create a second row.
        match = {**self._match(draft, profile), **self._identity(draft)}
        try:
            rows = await self._store.select(
                profile.name,
                match=match,
                order_by=profile.order_column,
                descending=True,
                limit=1,
            )
        except StoreError as e:
            if e.kind == "schema":
                # Older schema without video columns: nothing to dedupe against.
                return None
            raise PersistenceFailed(profile.name, e) from e
        return rows[0] if rows else None

    async def _insert_cascade(self, draft: CommitDraft, profile: TableProfile) -> tuple[Row, str, list[str]]:
        attempts: list[str] = []
        tried: list[dict[str, Any]] = []
        last_error: StoreError | None = None

        for name, build in self._strategies:
            record = build(draft, profile)
            if record in tried:
                continue
            tried.append(record)
            attempts.append(name)
            try:
                row = await self._store.insert(profile.name, record)
            except StoreError as e:
                if e.kind != "schema":
                    logger.error("Insert into %s rejected (%s): %s", profile.name, e.kind, e)
                    raise PersistenceFailed(profile.name, e) from e
                logger.warning("Insert into %s with '%s' record hit schema mismatch: %s", profile.name, name, e)
                last_error = e
                continue
            if name != self._strategies[0][0]:
                logger.info("Saved %s row using fallback '%s' record", profile.name, name)
            return row, name, attempts

        logger.error("All insert strategies failed for %s", profile.name)
        raise PersistenceFailed(profile.name, last_error or StoreError("schema", "no insert strategy accepted"))

    async def _apply_video_fields(
        self,
        draft: CommitDraft,
        profile: TableProfile,
        *,
        row_id: Any = None,
        video_written: bool = True,
    ) -> bool:
        """Best effort: the row already exists in a valid state, so failures are only logged.

        The update targets ``row_id`` when the store reported one. Otherwise the newest row
        matching the profile's match columns is used, narrowed to this upload's asset id or
        locator, or to rows with no video yet when the inserted record carried no video columns.
        """
        try:
            if row_id is None:
                row_id = await self._find_target_id(draft, profile, video_written=video_written)
            if row_id is None:
                logger.warning("Post-insert video field update skipped: no matching %s row", profile.name)
                return False
            count = await self._store.update(
                profile.name,
                draft.video.video_columns(),
                match={"id": row_id},
            )
        except StoreError as e:
            logger.warning("Post-insert video field update failed (non-blocking): %s", e)
            return False
        return count > 0

    async def _find_target_id(self, draft: CommitDraft, profile: TableProfile, *, video_written: bool) -> Any:
        narrow = self._identity(draft) if video_written else {VIDEO_URL_COLUMN: None}
        rows = await self._store.select(
            profile.name,
            columns=("id",),
            match={**self._match(draft, profile), **narrow},
            order_by=profile.order_column,
            descending=True,
            limit=1,
        )
        return rows[0].get("id") if rows else None
