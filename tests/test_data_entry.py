"""Tests for DataEntryService: school, proxy and sector entries."""

from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest

from database import StoreError
from models import DataEntry, DataEntryStatus
from services import NotFoundError, PermissionDeniedError, ValidationError


def school_entries(store, school_id):
    return {e.column_id: e for e in store.entries.values() if e.school_id == school_id}


class TestCategories:

    @pytest.mark.asyncio
    async def test_only_school_categories_with_columns(self, services, demo, school_id):
        result = await services.data_entry.get_categories_with_columns(school_id)

        assert [item.category.id for item in result] == [demo.category_id]
        assert [c.name for c in result[0].columns] == [
            "Number of students", "Number of teachers", "Contact e-mail", "Language of instruction",
        ]

    @pytest.mark.asyncio
    async def test_unknown_school(self, services):
        with pytest.raises(NotFoundError):
            await services.data_entry.get_categories_with_columns(uuid4())


class TestSaveEntries:

    @pytest.mark.asyncio
    async def test_new_values_are_drafts(self, services, store, demo, school_id, schooladmin, complete_values, columns):
        result = await services.data_entry.save_entries(schooladmin, school_id, demo.category_id, complete_values)

        assert result.success
        assert result.saved_count == 4
        entries = school_entries(store, school_id)
        assert all(e.status == DataEntryStatus.DRAFT for e in entries.values())
        assert entries[columns["students"]].value == "640"
        assert entries[columns["students"]].created_by == schooladmin.user_id

    @pytest.mark.asyncio
    async def test_resave_updates_in_place(self, services, store, demo, school_id, schooladmin, columns):
        await services.data_entry.save_entries(schooladmin, school_id, demo.category_id, {columns["students"]: 1})
        await services.data_entry.save_entries(schooladmin, school_id, demo.category_id, {str(columns["students"]): "2"})

        entries = school_entries(store, school_id)
        assert len(entries) == 1
        assert entries[columns["students"]].value == "2"

    @pytest.mark.asyncio
    async def test_any_error_writes_nothing(self, services, store, demo, school_id, schooladmin, columns):
        result = await services.data_entry.save_entries(schooladmin, school_id, demo.category_id, {
            columns["students"]: 100,
            columns["email"]: "not-an-email",
            "not-a-uuid": 1,
        })

        assert not result.success
        assert result.saved_count == 0
        messages = {e.message for e in result.errors}
        assert messages == {"Invalid email format", "Unknown column for this category"}
        assert school_entries(store, school_id) == {}

    @pytest.mark.asyncio
    async def test_store_failure_writes_nothing(
        self, services, store, demo, school_id, schooladmin, complete_values, columns
    ):
        # a concurrent writer stored teachers after the values were checked
        await store.insert_entry(DataEntry(
            school_id=school_id, category_id=demo.category_id, column_id=columns["teachers"], value="50",
        ))

        with patch.object(store, "list_entries", AsyncMock(return_value=[])):
            with pytest.raises(StoreError, match="already exists"):
                await services.data_entry.save_entries(schooladmin, school_id, demo.category_id, complete_values)

        entries = school_entries(store, school_id)
        assert list(entries) == [columns["teachers"]]
        assert entries[columns["teachers"]].value == "50"

    @pytest.mark.asyncio
    async def test_proxy_store_failure_writes_nothing(
        self, services, store, demo, school_id, sectoradmin, complete_values, columns
    ):
        await store.insert_entry(DataEntry(
            school_id=school_id, category_id=demo.category_id, column_id=columns["email"], value="a@b.az",
        ))

        with patch.object(store, "list_entries", AsyncMock(return_value=[])):
            with pytest.raises(StoreError):
                await services.data_entry.save_proxy_entries(
                    sectoradmin, school_id, demo.category_id, complete_values, "Offline"
                )

        assert list(school_entries(store, school_id)) == [columns["email"]]
        assert store.audit_logs == []

    @pytest.mark.asyncio
    async def test_column_of_other_category_is_unknown(self, services, demo, school_id, schooladmin, columns):
        result = await services.data_entry.save_entries(
            schooladmin, school_id, demo.category_id, {columns["methodists"]: 3}
        )
        assert result.errors[0].message == "Unknown column for this category"

    @pytest.mark.asyncio
    async def test_pending_values_are_locked_for_school_admin(
        self, services, demo, school_id, schooladmin, complete_values, columns
    ):
        await services.data_entry.save_entries(schooladmin, school_id, demo.category_id, complete_values)
        await services.data_entry.submit_category(schooladmin, school_id, demo.category_id)

        result = await services.data_entry.save_entries(schooladmin, school_id, demo.category_id, {columns["students"]: 1})

        assert not result.success
        assert "sector/region" in result.errors[0].message

    @pytest.mark.asyncio
    async def test_rejected_value_returns_to_draft(
        self, services, store, demo, school_id, schooladmin, sectoradmin, complete_values, columns
    ):
        await services.data_entry.save_entries(schooladmin, school_id, demo.category_id, complete_values)
        await services.data_entry.submit_category(schooladmin, school_id, demo.category_id)
        await services.approval.reject(sectoradmin, school_id, demo.category_id, "Too many students")

        result = await services.data_entry.save_entries(schooladmin, school_id, demo.category_id, {columns["students"]: 600})

        assert result.success
        entry = school_entries(store, school_id)[columns["students"]]
        assert entry.status == DataEntryStatus.DRAFT
        assert entry.rejection_reason is None
        assert entry.rejected_by is None

    @pytest.mark.asyncio
    async def test_no_access_to_other_school(self, services, demo, schooladmin, complete_values):
        with pytest.raises(PermissionDeniedError):
            await services.data_entry.save_entries(schooladmin, demo.school_ids[1], demo.category_id, complete_values)

    @pytest.mark.asyncio
    async def test_sector_category_is_refused(self, services, demo, school_id, schooladmin, columns):
        with pytest.raises(ValidationError):
            await services.data_entry.save_entries(
                schooladmin, school_id, demo.sector_category_id, {columns["methodists"]: 3}
            )


class TestSubmit:

    @pytest.mark.asyncio
    async def test_submit(self, services, demo, school_id, schooladmin, complete_values):
        await services.data_entry.save_entries(schooladmin, school_id, demo.category_id, complete_values)

        response = await services.data_entry.submit_category(schooladmin, school_id, demo.category_id)

        assert response.success
        assert response.status == DataEntryStatus.PENDING

    @pytest.mark.asyncio
    async def test_resubmit_after_rejection_goes_through_draft(
        self, services, demo, school_id, schooladmin, sectoradmin, complete_values
    ):
        await services.data_entry.save_entries(schooladmin, school_id, demo.category_id, complete_values)
        await services.data_entry.submit_category(schooladmin, school_id, demo.category_id)
        await services.approval.reject(sectoradmin, school_id, demo.category_id, "Fix it")

        response = await services.data_entry.submit_category(schooladmin, school_id, demo.category_id)

        assert response.success
        history = await services.transitions.get_status_history(school_id, demo.category_id)
        assert [(h.old_status.value, h.new_status.value) for h in history] == [
            ("draft", "pending"),
            ("rejected", "draft"),
            ("pending", "rejected"),
            ("draft", "pending"),
        ]

    @pytest.mark.asyncio
    async def test_incomplete_submit_is_refused(self, services, demo, school_id, schooladmin, columns):
        await services.data_entry.save_entries(schooladmin, school_id, demo.category_id, {columns["email"]: "a@b.az"})

        response = await services.data_entry.submit_category(schooladmin, school_id, demo.category_id)

        assert not response.success
        assert response.code == "CONDITIONS_NOT_MET"


class TestProxyEntries:

    @pytest.mark.asyncio
    async def test_proxy_entries_are_pending_with_proxy_details(
        self, services, store, demo, school_id, sectoradmin, complete_values
    ):
        result = await services.data_entry.save_proxy_entries(
            sectoradmin, school_id, demo.category_id, complete_values, "School has no internet"
        )

        assert result.success
        entries = school_entries(store, school_id).values()
        assert all(e.status == DataEntryStatus.PENDING for e in entries)
        assert all(e.proxy_created_by == sectoradmin.user_id for e in entries)
        assert all(e.proxy_original_entity == "School No. 6" for e in entries)
        assert store.audit_logs[-1].action == "proxy_data_entry"
        assert store.audit_logs[-1].proxy_info["proxy_reason"] == "School has no internet"

        inbox = await services.notifications.list_notifications(demo.users["schooladmin1"])
        assert [n.title for n in inbox] == ["Data entered on your behalf"]

    @pytest.mark.asyncio
    async def test_proxy_requires_reason(self, services, demo, school_id, sectoradmin, complete_values):
        with pytest.raises(ValidationError):
            await services.data_entry.save_proxy_entries(sectoradmin, school_id, demo.category_id, complete_values, "  ")

    @pytest.mark.asyncio
    async def test_school_admin_cannot_proxy(self, services, demo, school_id, schooladmin, complete_values):
        with pytest.raises(PermissionDeniedError):
            await services.data_entry.save_proxy_entries(schooladmin, school_id, demo.category_id, complete_values, "x")

    @pytest.mark.asyncio
    async def test_auto_approve_proxy(self, services, store, demo, school_id, sectoradmin, complete_values):
        await services.data_entry.save_proxy_entries(sectoradmin, school_id, demo.category_id, complete_values, "Offline")

        response = await services.data_entry.auto_approve_proxy(sectoradmin, school_id, demo.category_id)

        assert response.success
        assert response.affected == 4
        assert await services.transitions.get_current_status(school_id, demo.category_id) == DataEntryStatus.APPROVED
        assert store.audit_logs[-1].action == "proxy_auto_approve"
        assert store.status_history[-1].comment == "Automatically approved proxy entry"

    @pytest.mark.asyncio
    async def test_auto_approve_without_proxy_entries(self, services, demo, school_id, regionadmin):
        response = await services.data_entry.auto_approve_proxy(regionadmin, school_id, demo.category_id)
        assert response.success
        assert response.affected == 0


class TestSectorEntries:

    @pytest.mark.asyncio
    async def test_sector_value_is_approved_on_save(self, services, demo, sectoradmin, columns):
        entry = await services.data_entry.save_sector_entry(
            sectoradmin, demo.sector_id, demo.sector_category_id, columns["methodists"], "7"
        )

        assert entry.status == DataEntryStatus.APPROVED
        assert entry.approved_by == sectoradmin.user_id
        assert entry.value == "7"

    @pytest.mark.asyncio
    async def test_sector_value_upserts(self, services, demo, sectoradmin, columns):
        for value in (7, 9):
            await services.data_entry.save_sector_entry(
                sectoradmin, demo.sector_id, demo.sector_category_id, columns["methodists"], value
            )

        entries = await services.data_entry.get_sector_entries(demo.sector_id)
        assert [e.value for e in entries] == ["9"]

    @pytest.mark.asyncio
    async def test_school_category_is_refused(self, services, demo, sectoradmin, columns):
        with pytest.raises(ValidationError):
            await services.data_entry.save_sector_entry(
                sectoradmin, demo.sector_id, demo.category_id, columns["students"], 1
            )

    @pytest.mark.asyncio
    async def test_column_must_belong_to_category(self, services, demo, sectoradmin, columns):
        with pytest.raises(NotFoundError):
            await services.data_entry.save_sector_entry(
                sectoradmin, demo.sector_id, demo.sector_category_id, columns["students"], 1
            )

    @pytest.mark.asyncio
    async def test_invalid_value(self, services, demo, sectoradmin, columns):
        with pytest.raises(ValidationError) as exc_info:
            await services.data_entry.save_sector_entry(
                sectoradmin, demo.sector_id, demo.sector_category_id, columns["methodists"], "many"
            )
        assert exc_info.value.errors[0].message == "Enter a valid number"

    @pytest.mark.asyncio
    async def test_permissions(self, services, demo, schooladmin, sectoradmin, other_sector, columns):
        with pytest.raises(PermissionDeniedError):
            await services.data_entry.save_sector_entry(
                schooladmin, demo.sector_id, demo.sector_category_id, columns["methodists"], 1
            )
        with pytest.raises(PermissionDeniedError):
            await services.data_entry.save_sector_entry(
                sectoradmin, other_sector.id, demo.sector_category_id, columns["methodists"], 1
            )
