"""Public shared-file access route tests.

Validates:
  - View returns file metadata and share info; download returns bytes.
  - Denials map to their HTTP statuses (404, 410, 403, 400).
  - Capability links work without any stored share.
  - /share/{code} redirects to the view action.
  - A download cap holds under concurrent HTTP requests.
  - Requests carry rate-limit headers and a request id.
"""

from __future__ import annotations

import asyncio

import pytest
from httpx import ASGITransport, AsyncClient

from fileshare.inmemory import InMemoryFileStorage, InMemoryShareStore
from fileshare.main import create_app
from fileshare.settings import ShareSettings
from fileshare.sharing.audit import SHARE_DENIED, InMemoryActivitySink


class _YieldingShareStore(InMemoryShareStore):
    """Suspends between the usability check and the counter write."""

    async def _append_log(self, entry):
        await asyncio.sleep(0)
        await super()._append_log(entry)


@pytest.fixture
def env(clock, fake_time):
    files = InMemoryFileStorage()
    files.add('owner-1', 'résumé.pdf', b'%PDF-1.7 body', 'application/pdf', file_id='file-1')
    store = _YieldingShareStore()
    activity = InMemoryActivitySink()
    app = create_app(
        ShareSettings(
            signing_secret='access-test-signing-secret',
            public_base_url='https://files.test',
        ),
        share_store=store,
        files=files,
        activity=activity,
        clock=clock,
        rate_clock=fake_time,
        configure_logs=False,
    )
    return app, app.state.deps.service, files, activity


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url='http://test')


# ── Share code access ────────────────────────────────────────────────


class TestShareCodeAccess:

    @pytest.mark.asyncio
    async def test_view(self, env):
        app, service, _, _ = env
        minted = await service.mint_share('file-1', 'owner-1', 'both', 24, 5)

        async with _client(app) as c:
            resp = await c.get(f'/api/shared/{minted.share_code}')

        assert resp.status_code == 200
        body = resp.json()
        assert body['success'] is True
        assert body['file']['id'] == 'file-1'
        assert body['file']['original_name'] == 'résumé.pdf'
        assert 'owner_id' not in body['file']
        assert body['file']['download_url'].endswith('action=download')
        assert body['share_info'] == {
            'permissions': 'both',
            'remaining_downloads': 5,
            'expires_at': minted.expires_at.isoformat(),
        }

    @pytest.mark.asyncio
    async def test_download(self, env):
        app, service, _, _ = env
        minted = await service.mint_share('file-1', 'owner-1')

        async with _client(app) as c:
            resp = await c.get(f'/api/shared/{minted.share_code}', params={'action': 'download'})

        assert resp.status_code == 200
        assert resp.content == b'%PDF-1.7 body'
        assert resp.headers['content-type'] == 'application/pdf'
        disposition = resp.headers['content-disposition']
        assert disposition.startswith('attachment;')
        assert "filename*=UTF-8''r%C3%A9sum%C3%A9.pdf" in disposition
        assert resp.headers['cache-control'] == 'no-cache, no-store, must-revalidate'

    @pytest.mark.asyncio
    async def test_unknown_code(self, env):
        async with _client(env[0]) as c:
            resp = await c.get('/api/shared/0123456789ABCDEF')
        assert resp.status_code == 404
        assert resp.json() == {
            'success': False, 'error': 'not_found', 'detail': 'share not found',
        }

    @pytest.mark.asyncio
    async def test_malformed_code(self, env):
        async with _client(env[0]) as c:
            resp = await c.get('/api/shared/short')
        assert resp.status_code == 400
        assert resp.json()['error'] == 'malformed_input'

    @pytest.mark.asyncio
    async def test_bad_action(self, env):
        async with _client(env[0]) as c:
            resp = await c.get('/api/shared/0123456789ABCDEF', params={'action': 'delete'})
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_expired_is_410(self, env, clock):
        app, service, _, _ = env
        minted = await service.mint_share('file-1', 'owner-1', expires_in_hours=1)
        clock.advance(hours=2)

        async with _client(app) as c:
            resp = await c.get(f'/api/shared/{minted.share_code}')
        assert resp.status_code == 410
        assert resp.json()['error'] == 'expired'

    @pytest.mark.asyncio
    async def test_revoked_is_410(self, env):
        app, service, _, activity = env
        minted = await service.mint_share('file-1', 'owner-1')
        await service.revoke_all('file-1')

        async with _client(app) as c:
            resp = await c.get(f'/api/shared/{minted.share_code}')
        assert resp.status_code == 410
        assert len(activity.find(SHARE_DENIED)) == 1

    @pytest.mark.asyncio
    async def test_quota_is_403(self, env):
        app, service, _, _ = env
        minted = await service.mint_share('file-1', 'owner-1', max_downloads=1)

        async with _client(app) as c:
            ok = await c.get(f'/api/shared/{minted.share_code}', params={'action': 'download'})
            over = await c.get(f'/api/shared/{minted.share_code}', params={'action': 'download'})
        assert ok.status_code == 200
        assert over.status_code == 403
        assert over.json()['error'] == 'quota_exceeded'

    @pytest.mark.asyncio
    async def test_concurrent_downloads_respect_cap(self, env):
        app, service, _, _ = env
        minted = await service.mint_share('file-1', 'owner-1', max_downloads=3)
        url = f'/api/shared/{minted.share_code}'

        async with _client(app) as c:
            responses = await asyncio.gather(*[
                c.get(url, params={'action': 'download'}) for _ in range(8)
            ])

        statuses = sorted(r.status_code for r in responses)
        assert statuses == [200] * 3 + [403] * 5
        [share] = await service.list_shares('file-1')
        assert share.download_count == 3

    @pytest.mark.asyncio
    async def test_access_counted_when_file_gone(self, env):
        app, service, files, _ = env
        orphan = files.add('owner-1', 'gone.txt', b'x', file_id='file-9')
        minted = await service.mint_share(orphan.id, 'owner-1')
        files._files.pop(orphan.id)

        async with _client(app) as c:
            resp = await c.get(f'/api/shared/{minted.share_code}')
        assert resp.status_code == 404
        [share] = await service.list_shares('file-9')
        assert share.view_count == 1


# ── Capability access ────────────────────────────────────────────────


class TestCapabilityAccess:

    @pytest.mark.asyncio
    async def test_unbound_link(self, env):
        app, service, _, _ = env
        url = await service.mint_capability_link('http://test', 'file-1', permissions='download')

        async with _client(app) as c:
            resp = await c.get(f'{url}&action=download')
        assert resp.status_code == 200
        assert resp.content == b'%PDF-1.7 body'
        assert await service.list_shares('file-1') == []

    @pytest.mark.asyncio
    async def test_view_share_info_from_token(self, env):
        app, service, _, _ = env
        url = await service.mint_capability_link('http://test', 'file-1', permissions='view')

        async with _client(app) as c:
            resp = await c.get(url)
        info = resp.json()['share_info']
        assert info['permissions'] == 'view'
        assert info['remaining_downloads'] is None

    @pytest.mark.asyncio
    async def test_tampered_signature(self, env):
        app, service, _, _ = env
        url = await service.mint_capability_link('http://test', 'file-1')
        tampered = url[:-1] + ('0' if url[-1] != '0' else '1')

        async with _client(app) as c:
            resp = await c.get(tampered)
        assert resp.status_code == 403
        assert resp.json()['error'] == 'invalid_signature'

    @pytest.mark.asyncio
    async def test_signature_only(self, env):
        async with _client(env[0]) as c:
            resp = await c.get('/api/shared/file-1', params={'signature': 'a' * 64})
        assert resp.status_code == 403
        assert resp.json()['error'] == 'invalid_signature'

    @pytest.mark.asyncio
    async def test_link_for_other_file(self, env):
        app, service, _, _ = env
        url = await service.mint_capability_link('http://test', 'file-1')
        moved = url.replace('/api/shared/file-1?', '/api/shared/file-2?')

        async with _client(app) as c:
            resp = await c.get(moved)
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_expired_link(self, env, clock):
        app, service, _, _ = env
        url = await service.mint_capability_link('http://test', 'file-1', expires_in_hours=1)
        clock.advance(hours=1, minutes=1)

        async with _client(app) as c:
            resp = await c.get(url)
        assert resp.status_code == 410


# ── Redirect and headers ─────────────────────────────────────────────


class TestSharePage:

    @pytest.mark.asyncio
    async def test_share_page_redirects(self, env):
        async with _client(env[0]) as c:
            resp = await c.get('/share/0123456789ABCDEF')
        assert resp.status_code == 307
        assert resp.headers['location'] == '/api/shared/0123456789ABCDEF?action=view'

    @pytest.mark.asyncio
    async def test_rate_limit_and_request_id_headers(self, env):
        app, service, _, _ = env
        minted = await service.mint_share('file-1', 'owner-1')

        async with _client(app) as c:
            resp = await c.get(
                f'/api/shared/{minted.share_code}',
                headers={'X-Request-ID': 'req-00000042'},
            )
            spoofed = await c.get(
                f'/api/shared/{minted.share_code}',
                headers={'X-Request-ID': 'bad id!'},
            )
        assert resp.status_code == 200
        assert resp.headers['X-Request-ID'] == 'req-00000042'
        assert resp.headers['X-RateLimit-Limit'] == '1000'
        assert resp.headers['X-RateLimit-Remaining'] == '999'
        assert spoofed.headers['X-Request-ID'] != 'bad id!'

    @pytest.mark.asyncio
    async def test_metrics_endpoint(self, env):
        async with _client(env[0]) as c:
            await c.get('/api/shared/0123456789ABCDEF')
            resp = await c.get('/metrics')
        assert resp.status_code == 200
        assert 'fileshare_share_resolutions_total' in resp.text
