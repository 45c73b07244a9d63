import pytest

from playlist_curator.models import Entry, ImportItem, PendingMetadataEdit
from playlist_curator.services.merge import (
    InvalidEditValue,
    apply_edit,
    apply_to_entry,
    effective,
    normalize_date,
    normalize_tags,
    normalize_year,
    patch_record,
    stage_import_metadata,
)


@pytest.fixture
def entry():
    return Entry(
        item_id="m1",
        entry_id="e1",
        name="Casablanca",
        premiere_date="1942-11-26T00:00:00.0000000Z",
        production_year=1942,
        sort_name="casablanca",
        tags=["classic", "noir"],
        taglines=["Where love and intrigue meet"],
    )


class TestNormalizers:
    def test_tags_from_text(self):
        assert normalize_tags(" classic; noir ,, Classic ") == ["classic", "noir"]

    def test_tags_from_list(self):
        assert normalize_tags(["a", " b ", "", None]) == ["a", "b"]

    def test_tags_reject_other_types(self):
        with pytest.raises(InvalidEditValue):
            normalize_tags(42)

    def test_date_keeps_iso_day(self):
        assert normalize_date("1942-11-26T00:00:00.0000000Z") == "1942-11-26"

    def test_date_parses_loose_text(self):
        assert normalize_date("26 November 1942") == "1942-11-26"

    def test_date_empty_clears(self):
        assert normalize_date("  ") is None

    def test_date_garbage_is_rejected(self):
        with pytest.raises(InvalidEditValue):
            normalize_date("next tuesday-ish")

    @pytest.mark.parametrize("raw", ["2020-01-01garbage", "2020-01-01 and more", "now", "Today"])
    def test_date_rejects_trailing_text_and_relative_words(self, raw):
        with pytest.raises(InvalidEditValue):
            normalize_date(raw)

    def test_date_accepts_iso_with_time(self):
        assert normalize_date("2020-01-01T12:30:00+02:00") == "2020-01-01"

    def test_year_variants(self):
        assert normalize_year("1999") == 1999
        assert normalize_year(1999.0) == 1999
        assert normalize_year("") is None

    def test_year_rejects_fractions_and_words(self):
        with pytest.raises(InvalidEditValue):
            normalize_year("nineteen")
        with pytest.raises(InvalidEditValue):
            normalize_year(True)


class TestApplyEdit:
    def test_edit_is_pending(self, entry):
        edits = {}

        response = apply_edit(edits, entry, "production_year", "1943")

        assert response.accepted and response.pending
        assert edits["m1"].value("production_year") == 1943

    def test_editing_back_to_base_drops_the_edit(self, entry):
        edits = {}
        apply_edit(edits, entry, "production_year", "1943")

        response = apply_edit(edits, entry, "production_year", 1942)

        assert response.accepted
        assert not response.pending
        assert edits == {}

    def test_equivalent_tag_input_is_not_an_edit(self, entry):
        edits = {}

        apply_edit(edits, entry, "tags", "noir, Classic")
        apply_edit(edits, entry, "tags", ["classic", "noir"])

        assert edits == {}

    def test_reverting_one_field_keeps_the_other(self, entry):
        edits = {}
        apply_edit(edits, entry, "tagline", "Play it again")
        apply_edit(edits, entry, "sort_name", "casablanca 1942")

        apply_edit(edits, entry, "tagline", "Where love and intrigue meet")

        assert edits["m1"].flagged_fields == ["sort_name"]

    def test_rejected_value_leaves_state_untouched(self, entry):
        edits = {}
        apply_edit(edits, entry, "premiere_date", "1943-01-23")

        response = apply_edit(edits, entry, "premiere_date", "not a date at all")

        assert not response.accepted
        assert response.pending
        assert response.value == "1943-01-23"
        assert edits["m1"].value("premiere_date") == "1943-01-23"

    def test_clearing_a_field_is_an_edit(self, entry):
        edits = {}

        apply_edit(edits, entry, "tagline", "")

        assert edits["m1"].has("tagline")
        assert effective(entry, edits).tagline is None


def test_effective_overlays_edits(entry):
    edits = {}
    apply_edit(edits, entry, "tags", "classic")

    merged = effective(entry, edits)

    assert merged.tags == ["classic"]
    assert merged.premiere_date == "1942-11-26"
    assert merged.production_year == 1942


def test_stage_import_metadata_only_touches_mentioned_fields(entry):
    edits = {}
    imported = PendingMetadataEdit()
    imported.set("sort_name", "Casablanca (1942)")
    items = [ImportItem(item_id="m1", metadata=imported), ImportItem(item_id="unknown", metadata=imported)]

    staged = stage_import_metadata(edits, [entry], items)

    assert staged == 1
    assert edits["m1"].flagged_fields == ["sort_name"]


def test_patch_record_replaces_only_flagged_fields():
    record = {
        "Id": "m1",
        "Name": "Casablanca",
        "Overview": "Rick runs a nightclub.",
        "Tags": ["classic"],
        "Taglines": ["old"],
        "ProviderIds": {"Imdb": "tt0034583"},
    }
    edit = PendingMetadataEdit()
    edit.set("tagline", "new")
    edit.set("premiere_date", "1942-11-26")

    patched = patch_record(record, edit)

    assert patched["Taglines"] == ["new"]
    assert patched["PremiereDate"] == "1942-11-26T00:00:00.0000000Z"
    assert patched["Tags"] == ["classic"]
    assert patched["Overview"] == "Rick runs a nightclub."
    assert patched["ProviderIds"] == {"Imdb": "tt0034583"}
    assert record["Taglines"] == ["old"]


def test_patch_record_writes_forced_sort_name():
    edit = PendingMetadataEdit()
    edit.set("sort_name", "Casablanca 01")

    patched = patch_record({"Id": "m1"}, edit)

    assert patched["ForcedSortName"] == "Casablanca 01"
    assert patched["SortName"] == "Casablanca 01"


def test_apply_to_entry_makes_edit_the_new_base(entry):
    edits = {}
    apply_edit(edits, entry, "tags", "restored")

    apply_to_entry(entry, edits["m1"])
    response = apply_edit(edits, entry, "tags", "restored")

    assert entry.tags == ["restored"]
    assert not response.pending
