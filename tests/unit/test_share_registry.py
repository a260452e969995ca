"""Share registry lifecycle tests.

Validates:
  - Creation input bounds (permissions, expiry, download cap).
  - Active listing excludes revoked and expired shares, oldest first.
  - revoke_all is idempotent and only touches the given file.
  - record_access increments exactly one counter and appends one log entry.
  - Rejected accesses leave counters and log untouched.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from fileshare.errors import (
    MalformedInput,
    PermissionDenied,
    QuotaExceeded,
    ShareExpired,
    ShareNotFound,
)
from fileshare.sharing.model import AccessType, ClientInfo, Permission
from fileshare.sharing.registry import (
    MAX_DOWNLOADS,
    MAX_EXPIRY_HOURS,
    validate_share_request,
)

CLIENT = ClientInfo(ip_address='203.0.113.7', user_agent='pytest', referrer='https://ref.test')


# ── Validation ────────────────────────────────────────────────────────


class TestValidation:

    @pytest.mark.parametrize('permissions', ['view', 'download', 'both', Permission.VIEW])
    def test_valid_permissions(self, permissions):
        assert validate_share_request(permissions, 24) == Permission(permissions)

    @pytest.mark.parametrize('permissions', ['edit', '', None, 'VIEW'])
    def test_invalid_permissions(self, permissions):
        with pytest.raises(MalformedInput):
            validate_share_request(permissions, 24)

    @pytest.mark.parametrize('hours', [1, 24, 0.5 + 0.5, MAX_EXPIRY_HOURS])
    def test_expiry_bounds_accept(self, hours):
        validate_share_request('view', hours)

    @pytest.mark.parametrize('hours', [0, 0.99, MAX_EXPIRY_HOURS + 1, -5, True, '24', None])
    def test_expiry_bounds_reject(self, hours):
        with pytest.raises(MalformedInput):
            validate_share_request('view', hours)

    @pytest.mark.parametrize('cap', [1, 100, MAX_DOWNLOADS, None])
    def test_download_cap_accept(self, cap):
        validate_share_request('download', 24, cap)

    @pytest.mark.parametrize('cap', [0, -1, MAX_DOWNLOADS + 1, 2.5, True, '3'])
    def test_download_cap_reject(self, cap):
        with pytest.raises(MalformedInput):
            validate_share_request('download', 24, cap)

    @pytest.mark.asyncio
    async def test_create_requires_file_and_owner(self, registry):
        with pytest.raises(MalformedInput):
            await registry.create_share('', 'owner-1')
        with pytest.raises(MalformedInput):
            await registry.create_share('file-1', '')


# ── Creation ──────────────────────────────────────────────────────────


class TestCreate:

    @pytest.mark.asyncio
    async def test_new_share_fields(self, registry, clock):
        share = await registry.create_share('file-1', 'owner-1', 'download', 48, 5)

        assert share.file_id == 'file-1'
        assert share.shared_by == 'owner-1'
        assert share.permissions is Permission.DOWNLOAD
        assert share.max_downloads == 5
        assert share.download_count == 0
        assert share.view_count == 0
        assert share.is_active
        assert share.expires_at == clock() + timedelta(hours=48)
        assert share.created_at == clock()

    @pytest.mark.asyncio
    async def test_lookup_by_code(self, registry):
        share = await registry.create_share('file-1', 'owner-1')
        found = await registry.get_by_code(share.share_code)
        assert found.id == share.id


# ── Listing and revocation ───────────────────────────────────────────


class TestActiveShares:

    @pytest.mark.asyncio
    async def test_lists_active_oldest_first(self, registry, clock):
        first = await registry.create_share('file-1', 'owner-1')
        clock.advance(minutes=1)
        second = await registry.create_share('file-1', 'owner-1', expires_in_hours=1)
        clock.advance(minutes=1)
        third = await registry.create_share('file-1', 'owner-1', expires_in_hours=72)
        await registry.create_share('file-2', 'owner-1')

        active = await registry.get_active_shares('file-1')
        assert [s.id for s in active] == [first.id, second.id, third.id]

        clock.advance(hours=1)
        active = await registry.get_active_shares('file-1')
        assert [s.id for s in active] == [first.id, third.id]

    @pytest.mark.asyncio
    async def test_list_shares_includes_inactive(self, registry, clock):
        await registry.create_share('file-1', 'owner-1')
        await registry.revoke_all('file-1')
        await registry.create_share('file-1', 'owner-1', expires_in_hours=1)
        clock.advance(hours=2)

        assert await registry.get_active_shares('file-1') == []
        assert len(await registry.list_shares('file-1')) == 2

    @pytest.mark.asyncio
    async def test_revoke_all_is_idempotent(self, registry):
        await registry.create_share('file-1', 'owner-1')
        await registry.create_share('file-1', 'owner-1')
        other = await registry.create_share('file-2', 'owner-1')

        assert await registry.revoke_all('file-1') == 2
        assert await registry.revoke_all('file-1') == 0
        assert await registry.get_active_shares('file-1') == []
        assert [s.id for s in await registry.get_active_shares('file-2')] == [other.id]

    @pytest.mark.asyncio
    async def test_revoke_unknown_file(self, registry):
        assert await registry.revoke_all('missing') == 0


# ── Usage recording ──────────────────────────────────────────────────


class TestRecordAccess:

    @pytest.mark.asyncio
    async def test_download_increments_and_logs(self, registry, store, clock):
        share = await registry.create_share('file-1', 'owner-1', max_downloads=3)

        updated = await registry.record_access(share.id, AccessType.DOWNLOAD, CLIENT)
        assert updated.download_count == 1
        assert updated.view_count == 0

        log = await store.list_access_log(share.id)
        assert len(log) == 1
        assert log[0].access_type is AccessType.DOWNLOAD
        assert log[0].ip_address == '203.0.113.7'
        assert log[0].user_agent == 'pytest'
        assert log[0].referrer == 'https://ref.test'
        assert log[0].accessed_at == clock()

    @pytest.mark.asyncio
    async def test_view_increments_view_count(self, registry):
        share = await registry.create_share('file-1', 'owner-1')
        updated = await registry.record_access(share.id, AccessType.VIEW, CLIENT)
        assert (updated.view_count, updated.download_count) == (1, 0)

    @pytest.mark.asyncio
    async def test_cap_reached_is_quota_exceeded(self, registry, store):
        share = await registry.create_share('file-1', 'owner-1', max_downloads=1)
        await registry.record_access(share.id, AccessType.DOWNLOAD, CLIENT)

        with pytest.raises(QuotaExceeded):
            await registry.record_access(share.id, AccessType.DOWNLOAD, CLIENT)

        stored = await store.get_by_id(share.id)
        assert stored.download_count == 1
        assert len(await store.list_access_log(share.id)) == 1

    @pytest.mark.asyncio
    async def test_views_not_capped(self, registry):
        share = await registry.create_share('file-1', 'owner-1', max_downloads=1)
        await registry.record_access(share.id, AccessType.DOWNLOAD, CLIENT)
        updated = await registry.record_access(share.id, AccessType.VIEW, CLIENT)
        assert updated.view_count == 1

    @pytest.mark.asyncio
    async def test_rejections_do_not_mutate(self, registry, store, clock):
        view_only = await registry.create_share('file-1', 'owner-1', 'view')
        with pytest.raises(PermissionDenied):
            await registry.record_access(view_only.id, AccessType.DOWNLOAD, CLIENT)

        revoked = await registry.create_share('file-2', 'owner-1')
        await registry.revoke_all('file-2')
        with pytest.raises(ShareExpired):
            await registry.record_access(revoked.id, AccessType.VIEW, CLIENT)

        expiring = await registry.create_share('file-3', 'owner-1', expires_in_hours=1)
        clock.advance(hours=1)
        with pytest.raises(ShareExpired):
            await registry.record_access(expiring.id, AccessType.VIEW, CLIENT)

        for share in (view_only, revoked, expiring):
            stored = await store.get_by_id(share.id)
            assert (stored.view_count, stored.download_count) == (0, 0)
            assert await store.list_access_log(share.id) == []

    @pytest.mark.asyncio
    async def test_unknown_share(self, registry):
        with pytest.raises(ShareNotFound):
            await registry.record_access('nope', AccessType.VIEW, CLIENT)
