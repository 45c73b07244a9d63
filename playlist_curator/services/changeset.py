from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from playlist_curator.models import Entry, ImportItem, ImportOptions, PendingMetadataEdit


@dataclass
class ImportPlan:
    options: ImportOptions
    missing_ids: List[str] = field(default_factory=list)
    extra_entry_ids: List[str] = field(default_factory=list)
    import_ids: List[str] = field(default_factory=list)
    target_order: Optional[List[str]] = None
    metadata_items: List[ImportItem] = field(default_factory=list)
    needs_reload: bool = False

    def summary(self) -> Dict[str, Any]:
        return {
            "add": len(self.missing_ids),
            "remove": len(self.extra_entry_ids),
            "reorder": self.options.reorder,
            "metadata_items": sum(1 for item in self.metadata_items if not item.metadata.is_empty),
        }


@dataclass
class ChangeSet:
    """Everything the user has staged but not yet saved."""

    target_order: Optional[List[str]] = None
    edits: Dict[str, PendingMetadataEdit] = field(default_factory=dict)
    import_plan: Optional[ImportPlan] = None

    @property
    def is_empty(self) -> bool:
        return self.target_order is None and not self.edits and self.import_plan is None

    def clear(self) -> None:
        self.target_order = None
        self.edits.clear()
        self.import_plan = None

    def summary(self) -> Dict[str, Any]:
        return {
            "preview_order": self.target_order is not None,
            "metadata_edits": len(self.edits),
            "import": self.import_plan.summary() if self.import_plan else None,
        }


@dataclass
class PlaylistState:
    """Session state for one playlist.

    ``entries`` mirrors the server-confirmed order; only the loader and the
    executor mutate it, and only after the server has confirmed a call.
    """

    playlist_id: str
    entries: List[Entry] = field(default_factory=list)
    total: Optional[int] = None
    cursor: int = 0
    changeset: ChangeSet = field(default_factory=ChangeSet)
    status: str = "Ready."

    @property
    def is_complete(self) -> bool:
        return self.total is not None and len(self.entries) == self.total

    @property
    def entry_ids(self) -> List[Optional[str]]:
        return [entry.entry_id for entry in self.entries]
