"""Tests for the school × column report and column deletion."""

from uuid import uuid4

import pytest

from models import DataEntryStatus, SectorDataEntry
from services import NotFoundError, PermissionDeniedError, ValidationError, confirmation_phrase


@pytest.fixture
def fill(services, demo, columns, admin_of):
    """Save the student and teacher counts of a school as its own admin."""
    async def run(school_id, students, teachers=None):
        values = {columns["students"]: students}
        if teachers is not None:
            values[columns["teachers"]] = teachers
        result = await services.data_entry.save_entries(admin_of[school_id], school_id, demo.category_id, values)
        assert result.success
    return run


class TestSchoolColumnReport:

    @pytest.mark.asyncio
    async def test_cells_per_school_and_column(self, services, demo, columns, sectoradmin, fill):
        first, second = demo.school_ids
        await fill(first, 640, 52)

        report = await services.reports.school_column_report(
            sectoradmin, column_ids=[columns["students"], columns["teachers"]]
        )

        assert [c.id for c in report.columns] == [columns["students"], columns["teachers"]]
        rows = {r.school_id: r for r in report.rows}
        assert rows[first].region_name == "Baku"
        assert rows[first].sector_name == "Yasamal"
        assert rows[first].cells[columns["students"]].value == "640"
        assert rows[first].cells[columns["students"]].status == DataEntryStatus.DRAFT
        assert rows[second].cells[columns["teachers"]].value is None
        assert rows[second].cells[columns["teachers"]].status is None

    @pytest.mark.asyncio
    async def test_category_selects_its_columns(self, services, demo, superadmin):
        report = await services.reports.school_column_report(superadmin, category_id=demo.category_id)
        assert [c.name for c in report.columns] == [
            "Number of students",
            "Number of teachers",
            "Contact e-mail",
            "Language of instruction",
        ]
        assert len(report.rows) == 2

    @pytest.mark.asyncio
    async def test_default_order_is_by_name(self, services, demo, superadmin):
        report = await services.reports.school_column_report(superadmin, category_id=demo.category_id)
        assert [r.school_name for r in report.rows] == ["School No. 23", "School No. 6"]

    @pytest.mark.asyncio
    async def test_numeric_sort_with_empty_last(self, services, store, demo, columns, other_school, superadmin, fill):
        first, second = demo.school_ids
        await fill(first, 640)
        await fill(second, 90)

        ascending = await services.reports.school_column_report(
            superadmin, column_ids=[columns["students"]], sort_column_id=columns["students"]
        )
        descending = await services.reports.school_column_report(
            superadmin, column_ids=[columns["students"]], sort_column_id=columns["students"], descending=True
        )

        assert [r.school_id for r in ascending.rows] == [second, first, other_school.id]
        assert [r.school_id for r in descending.rows] == [first, second, other_school.id]

    @pytest.mark.asyncio
    async def test_scope_and_search(self, services, demo, columns, other_school, sectoradmin, regionadmin):
        sector_report = await services.reports.school_column_report(sectoradmin, column_ids=[columns["students"]])
        region_report = await services.reports.school_column_report(
            regionadmin, column_ids=[columns["students"]], search="  no. 18 "
        )

        assert other_school.id not in {r.school_id for r in sector_report.rows}
        assert [r.school_id for r in region_report.rows] == [other_school.id]

    @pytest.mark.asyncio
    async def test_school_admin_is_refused(self, services, columns, schooladmin):
        with pytest.raises(PermissionDeniedError):
            await services.reports.school_column_report(schooladmin, column_ids=[columns["students"]])

    @pytest.mark.asyncio
    async def test_needs_columns(self, services, superadmin):
        with pytest.raises(ValidationError):
            await services.reports.school_column_report(superadmin)

    @pytest.mark.asyncio
    async def test_unknown_column(self, services, superadmin):
        with pytest.raises(NotFoundError):
            await services.reports.school_column_report(superadmin, column_ids=[uuid4()])

    @pytest.mark.asyncio
    async def test_sort_column_must_be_in_report(self, services, columns, superadmin):
        with pytest.raises(ValidationError, match="Cannot sort"):
            await services.reports.school_column_report(
                superadmin, column_ids=[columns["students"]], sort_column_id=columns["teachers"]
            )


class TestDeleteColumn:

    @pytest.mark.asyncio
    async def test_soft_deletes_column_and_entries(self, services, store, demo, columns, regionadmin, fill):
        first, second = demo.school_ids
        await fill(first, 640, 52)
        await fill(second, 90, 12)
        column_id = columns["teachers"]

        result = await services.columns.delete_column(
            regionadmin, column_id, confirmation_phrase("Number of teachers")
        )

        assert result.deleted_entries == 2
        assert (result.restoration_deadline - result.deleted_at).days == 30
        assert store.columns[column_id].status == "deleted"
        assert await store.list_entries(column_id=column_id) == []
        assert len(await store.list_entries(column_id=columns["students"])) == 2
        assert column_id not in {c.id for c in await store.list_columns(demo.category_id)}

        logs = await store.list_audit_logs(entity_id=str(column_id))
        assert [log.action for log in logs] == ["SOFT_DELETE_COLUMN"]
        assert logs[0].new_value["deleted_entries"] == 2

    @pytest.mark.asyncio
    async def test_completion_drops_deleted_column(self, services, demo, columns, school_id, superadmin, fill):
        await fill(school_id, 640)
        before = await services.completion.category_completion(school_id, demo.category_id)

        await services.columns.delete_column(superadmin, columns["teachers"], "DELETE Number of teachers")

        after = await services.completion.category_completion(school_id, demo.category_id)
        assert before.total_columns == 4
        assert after.total_columns == 3

    @pytest.mark.asyncio
    async def test_counts_sector_entries(self, services, store, demo, columns, superadmin):
        await store.insert_sector_entry(SectorDataEntry(
            sector_id=demo.sector_id,
            category_id=demo.sector_category_id,
            column_id=columns["methodists"],
            value="4",
        ))

        result = await services.columns.delete_column(
            superadmin, columns["methodists"], "DELETE Number of methodists"
        )

        assert result.deleted_entries == 0
        assert result.sector_entries == 1

    @pytest.mark.asyncio
    async def test_wrong_confirmation(self, services, store, columns, superadmin):
        with pytest.raises(ValidationError) as exc_info:
            await services.columns.delete_column(superadmin, columns["teachers"], "DELETE teachers")

        assert exc_info.value.code == "CONFIRMATION_MISMATCH"
        assert exc_info.value.errors[0]["expected"] == "DELETE Number of teachers"
        assert store.columns[columns["teachers"]].status == "active"

    @pytest.mark.asyncio
    async def test_already_deleted(self, services, columns, superadmin):
        await services.columns.delete_column(superadmin, columns["email"], "DELETE Contact e-mail")
        with pytest.raises(ValidationError, match="already deleted"):
            await services.columns.delete_column(superadmin, columns["email"], "DELETE Contact e-mail")

    @pytest.mark.asyncio
    async def test_sector_admin_is_refused(self, services, columns, sectoradmin):
        with pytest.raises(PermissionDeniedError):
            await services.columns.delete_column(sectoradmin, columns["email"], "DELETE Contact e-mail")

    @pytest.mark.asyncio
    async def test_unknown_column(self, services, superadmin):
        with pytest.raises(NotFoundError):
            await services.columns.delete_column(superadmin, uuid4(), "DELETE x")
