from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

EDITABLE_FIELDS = ("tags", "tagline", "sort_name", "premiere_date", "production_year")

EditableField = Literal["tags", "tagline", "sort_name", "premiere_date", "production_year"]
SortKey = Literal["name", "sort_name", "premiere_date", "production_year", "episode"]


class Entry(BaseModel):
    """One occurrence of a media item in the playlist.

    The entry's position is its index in the session's entry list and is
    never stored on the entry itself.
    """

    item_id: str
    entry_id: Optional[str] = None
    name: str = ""
    type: str = ""
    series_name: Optional[str] = None
    season_number: Optional[int] = None
    episode_number: Optional[int] = None
    episode_number_end: Optional[int] = None
    premiere_date: Optional[str] = None
    production_year: Optional[int] = None
    sort_name: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    taglines: List[str] = Field(default_factory=list)

    @classmethod
    def from_dto(cls, dto: Dict[str, Any]) -> Entry:
        if not isinstance(dto, dict) or not dto.get("Id"):
            raise ValueError(f"Playlist item without an Id: {dto!r}")
        return cls(
            item_id=str(dto["Id"]),
            entry_id=dto.get("PlaylistItemId") or dto.get("PlaylistItemID") or None,
            name=dto.get("Name") or "",
            type=dto.get("Type") or "",
            series_name=dto.get("SeriesName"),
            season_number=dto.get("ParentIndexNumber"),
            episode_number=dto.get("IndexNumber"),
            episode_number_end=dto.get("IndexNumberEnd"),
            premiere_date=dto.get("PremiereDate"),
            production_year=dto.get("ProductionYear"),
            sort_name=dto.get("SortName"),
            tags=list(dto.get("Tags") or []),
            taglines=list(dto.get("Taglines") or []),
        )


class FieldValue(BaseModel):
    value: Any = None


class PendingMetadataEdit(BaseModel):
    """Per-field overrides for one item.

    A slot left as ``None`` inherits the base value; a ``FieldValue`` whose
    value is ``None`` (or an empty tag list) clears the field.
    """

    tags: Optional[FieldValue] = None
    tagline: Optional[FieldValue] = None
    sort_name: Optional[FieldValue] = None
    premiere_date: Optional[FieldValue] = None
    production_year: Optional[FieldValue] = None

    def has(self, field: str) -> bool:
        return getattr(self, field) is not None

    def value(self, field: str) -> Any:
        slot = getattr(self, field)
        return None if slot is None else slot.value

    def set(self, field: str, value: Any) -> None:
        setattr(self, field, FieldValue(value=value))

    def unset(self, field: str) -> None:
        setattr(self, field, None)

    @property
    def flagged_fields(self) -> List[str]:
        return [field for field in EDITABLE_FIELDS if self.has(field)]

    @property
    def is_empty(self) -> bool:
        return not self.flagged_fields


class EffectiveMetadata(BaseModel):
    tags: List[str] = Field(default_factory=list)
    tagline: Optional[str] = None
    sort_name: Optional[str] = None
    premiere_date: Optional[str] = None
    production_year: Optional[int] = None


class ImportItem(BaseModel):
    item_id: str
    name: Optional[str] = None
    type: Optional[str] = None
    metadata: PendingMetadataEdit = Field(default_factory=PendingMetadataEdit)


class ExportItem(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    item_id: str
    name: str = ""
    type: str = ""
    series_name: Optional[str] = None
    season_number: Optional[int] = None
    episode_number: Optional[int] = None
    episode_number_end: Optional[int] = None
    premiere_date: Optional[str] = None
    production_year: Optional[int] = None
    sort_name: Optional[str] = None
    tags: Optional[List[str]] = None
    tagline: Optional[str] = None


class ExportDocument(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    version: int = 1
    playlist_id: str
    playlist_name: str = ""
    exported_at: str
    items: List[ExportItem]

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)


class PlaylistSummary(BaseModel):
    id: str
    name: str


class EditRequest(BaseModel):
    item_id: str
    field: EditableField
    value: Any = None


class EditResponse(BaseModel):
    item_id: str
    field: EditableField
    accepted: bool
    pending: bool
    value: Any = None
    message: str = ""


class ImportOptions(BaseModel):
    add_missing: bool = True
    remove_extra: bool = False
    reorder: bool = True
    apply_metadata: bool = True
    dry_run: bool = True


class ImportPreview(BaseModel):
    missing_ids: List[str]
    extra_entry_ids: List[str]
    target_order: Optional[List[str]] = None
    planned_moves: int = 0
    metadata_items: int = 0
    dry_run: bool = True


class SaveResult(BaseModel):
    added: int = 0
    removed: int = 0
    moves: int = 0
    metadata_updated: int = 0
    reloaded: bool = False


class LoadRequest(BaseModel):
    page_size: Optional[int] = None
    throttle_ms: Optional[int] = None
    auto_load_all: Optional[bool] = None


class SortRequest(BaseModel):
    key: SortKey
    ascending: bool = True


class RankRequest(BaseModel):
    entry_ids: List[str]


class MoveRequest(BaseModel):
    position: int
    new_position: int


class SelectionMoveRequest(BaseModel):
    positions: List[int]
    target_index: int


class EntryView(BaseModel):
    position: int
    item_id: str
    entry_id: Optional[str] = None
    name: str
    type: str
    series_name: Optional[str] = None
    season_number: Optional[int] = None
    episode_number: Optional[int] = None
    metadata: EffectiveMetadata
    pending_fields: List[str] = Field(default_factory=list)


class SessionView(BaseModel):
    playlist_id: str
    total: Optional[int] = None
    loaded: int
    complete: bool
    status: str
    preview_active: bool
    changes: Dict[str, Any]
    entries: List[EntryView]


__all__ = [
    "EDITABLE_FIELDS",
    "EditRequest",
    "EditResponse",
    "EffectiveMetadata",
    "Entry",
    "EntryView",
    "ExportDocument",
    "ExportItem",
    "FieldValue",
    "ImportItem",
    "ImportOptions",
    "ImportPreview",
    "LoadRequest",
    "MoveRequest",
    "PendingMetadataEdit",
    "PlaylistSummary",
    "RankRequest",
    "SaveResult",
    "SelectionMoveRequest",
    "SessionView",
    "SortRequest",
]
