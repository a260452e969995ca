"""Owner share-management route tests.

Validates:
  - Create/list/revoke/link endpoints require an authenticated owner.
  - Non-owners get 403 on creation and 404 on listing/revocation.
  - Input validation failures render as 400 malformed_input.
  - Listing carries live counters, remaining downloads and public URLs.
  - Uploads are rate-limited by the burst policy.
"""

from __future__ import annotations

import time

import jwt
import pytest
from httpx import ASGITransport, AsyncClient

from fileshare.files import MAX_UPLOAD_BYTES
from fileshare.inmemory import InMemoryFileStorage, InMemoryShareStore
from fileshare.main import create_app
from fileshare.settings import ShareSettings
from fileshare.sharing.audit import SHARE_CREATED, SHARES_REVOKED, InMemoryActivitySink

JWT_SECRET = 'owner-jwt-secret-for-route-tests'


def _owner_token(user_id: str, **overrides) -> str:
    claims = {
        'sub': user_id,
        'email': f'{user_id}@example.com',
        'aud': 'authenticated',
        'exp': int(time.time()) + 3600,
        **overrides,
    }
    return jwt.encode(claims, JWT_SECRET, algorithm='HS256')


def _auth(user_id: str = 'owner-1') -> dict[str, str]:
    return {'Authorization': f'Bearer {_owner_token(user_id)}'}


# ── Test app ──────────────────────────────────────────────────────────


@pytest.fixture
def app_parts(clock, fake_time):
    files = InMemoryFileStorage()
    files.add('owner-1', 'report.pdf', b'%PDF-1.7', 'application/pdf', file_id='file-1')
    files.add('owner-2', 'other.txt', b'hello', 'text/plain', file_id='file-2')
    store = InMemoryShareStore()
    activity = InMemoryActivitySink()
    app = create_app(
        ShareSettings(
            signing_secret='route-test-signing-secret',
            public_base_url='https://files.test',
            jwt_secret=JWT_SECRET,
        ),
        share_store=store,
        files=files,
        activity=activity,
        clock=clock,
        rate_clock=fake_time,
        configure_logs=False,
    )
    return app, store, files, activity


@pytest.fixture
def client(app_parts):
    app = app_parts[0]
    return AsyncClient(transport=ASGITransport(app=app), base_url='http://test')


# ── Auth ──────────────────────────────────────────────────────────────


class TestAuth:

    @pytest.mark.asyncio
    async def test_create_requires_auth(self, client):
        async with client as c:
            resp = await c.post('/api/files/file-1/share', json={})
        assert resp.status_code == 401
        assert resp.json()['error'] == 'unauthorized'

    @pytest.mark.asyncio
    async def test_invalid_bearer_rejected(self, client):
        async with client as c:
            resp = await c.get(
                '/api/files/file-1/share',
                headers={'Authorization': 'Bearer not-a-jwt'},
            )
        assert resp.status_code == 401
        assert resp.json()['code'] == 'invalid_token'

    @pytest.mark.asyncio
    async def test_expired_bearer_rejected(self, client):
        token = _owner_token('owner-1', exp=int(time.time()) - 10)
        async with client as c:
            resp = await c.get(
                '/api/files/file-1/share',
                headers={'Authorization': f'Bearer {token}'},
            )
        assert resp.status_code == 401
        assert resp.json()['code'] == 'token_expired'

    @pytest.mark.asyncio
    async def test_health_is_public(self, client):
        async with client as c:
            resp = await c.get('/health')
        assert resp.status_code == 200
        assert resp.json()['status'] == 'ok'


# ── Create ────────────────────────────────────────────────────────────


class TestCreateShare:

    @pytest.mark.asyncio
    async def test_owner_creates_share(self, client, app_parts):
        _, store, _, activity = app_parts
        async with client as c:
            resp = await c.post(
                '/api/files/file-1/share',
                json={'permissions': 'download', 'expires_in': 48, 'max_downloads': 3},
                headers=_auth(),
            )
        assert resp.status_code == 200
        body = resp.json()
        assert body['success'] is True
        data = body['share_data']
        assert data['url'] == f"https://files.test/share/{data['share_code']}"
        assert data['permissions'] == 'download'
        assert data['max_downloads'] == 3
        assert 'capability_url' not in data

        assert (await store.get_by_code(data['share_code'])).shared_by == 'owner-1'
        assert len(activity.find(SHARE_CREATED, 'file-1')) == 1

    @pytest.mark.asyncio
    async def test_create_with_capability_link(self, client):
        async with client as c:
            resp = await c.post(
                '/api/files/file-1/share',
                json={'capability_link': True},
                headers=_auth(),
            )
        data = resp.json()['share_data']
        assert data['capability_url'].startswith('https://files.test/api/shared/file-1?')
        assert 'filename=report.pdf' in data['capability_url']

    @pytest.mark.asyncio
    async def test_non_owner_forbidden(self, client):
        async with client as c:
            resp = await c.post('/api/files/file-2/share', json={}, headers=_auth())
        assert resp.status_code == 403
        assert resp.json()['error'] == 'permission_denied'
        assert resp.headers['X-RateLimit-Limit'] == '1000'

    @pytest.mark.asyncio
    async def test_missing_file(self, client):
        async with client as c:
            resp = await c.post('/api/files/nope/share', json={}, headers=_auth())
        assert resp.status_code == 404
        assert resp.json()['error'] == 'not_found'
        assert resp.headers['X-RateLimit-Remaining'] == '999'

    @pytest.mark.asyncio
    @pytest.mark.parametrize('body', [
        {'permissions': 'edit'},
        {'expires_in': 0},
        {'expires_in': 9000},
        {'max_downloads': 0},
        {'max_downloads': 10001},
        {'expires_in': 'soon'},
    ])
    async def test_invalid_input_is_400(self, client, body):
        async with client as c:
            resp = await c.post('/api/files/file-1/share', json=body, headers=_auth())
        assert resp.status_code == 400
        assert resp.json()['error'] == 'malformed_input'


# ── List / revoke ─────────────────────────────────────────────────────


class TestListAndRevoke:

    @pytest.mark.asyncio
    async def test_list_shows_counters(self, client):
        async with client as c:
            created = await c.post(
                '/api/files/file-1/share', json={'max_downloads': 2}, headers=_auth(),
            )
            code = created.json()['share_data']['share_code']
            await c.get(f'/api/shared/{code}', params={'action': 'download'})

            resp = await c.get('/api/files/file-1/share', headers=_auth())

        [share] = resp.json()['shares']
        assert share['share_code'] == code
        assert share['download_count'] == 1
        assert share['remaining_downloads'] == 1
        assert share['url'] == f'https://files.test/share/{code}'

    @pytest.mark.asyncio
    async def test_list_hides_foreign_files(self, client):
        async with client as c:
            resp = await c.get('/api/files/file-2/share', headers=_auth())
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_revoke_is_idempotent(self, client, app_parts):
        activity = app_parts[3]
        async with client as c:
            await c.post('/api/files/file-1/share', json={}, headers=_auth())
            await c.post('/api/files/file-1/share', json={}, headers=_auth())

            first = await c.delete('/api/files/file-1/share', headers=_auth())
            second = await c.delete('/api/files/file-1/share', headers=_auth())
            active = await c.get('/api/files/file-1/share', headers=_auth())
            everything = await c.get(
                '/api/files/file-1/share',
                params={'include_inactive': 'true'},
                headers=_auth(),
            )

        assert first.json() == {'success': True, 'revoked': 2}
        assert second.json() == {'success': True, 'revoked': 0}
        assert active.json()['shares'] == []
        assert len(everything.json()['shares']) == 2
        assert len(activity.find(SHARES_REVOKED, 'file-1')) == 2

    @pytest.mark.asyncio
    async def test_revoke_foreign_file_hidden(self, client):
        async with client as c:
            resp = await c.delete('/api/files/file-2/share', headers=_auth())
        assert resp.status_code == 404


# ── Capability links ─────────────────────────────────────────────────


class TestCreateLink:

    @pytest.mark.asyncio
    async def test_link_opens_file(self, client):
        async with client as c:
            resp = await c.post(
                '/api/files/file-1/share/link',
                json={'permissions': 'view', 'expires_in': 1},
                headers=_auth(),
            )
            url = resp.json()['url']
            assert url.startswith('https://files.test/api/shared/file-1?')

            view = await c.get(url.replace('https://files.test', ''))
            download = await c.get(
                url.replace('https://files.test', '') + '&action=download',
            )

        assert view.status_code == 200
        assert view.json()['file']['original_name'] == 'report.pdf'
        assert download.status_code == 403
        assert download.json()['error'] == 'permission_denied'

    @pytest.mark.asyncio
    async def test_capped_link_backed_by_share(self, client, app_parts):
        store = app_parts[1]
        async with client as c:
            resp = await c.post(
                '/api/files/file-1/share/link',
                json={'max_downloads': 1},
                headers=_auth(),
            )
        assert resp.status_code == 200
        [share] = await store.list_for_file('file-1')
        assert share.max_downloads == 1

    @pytest.mark.asyncio
    async def test_link_for_foreign_file(self, client):
        async with client as c:
            resp = await c.post('/api/files/file-2/share/link', json={}, headers=_auth())
        assert resp.status_code == 403


# ── Uploads ──────────────────────────────────────────────────────────


class TestUpload:

    @pytest.mark.asyncio
    async def test_upload_then_share(self, client):
        async with client as c:
            up = await c.post(
                '/api/files',
                params={'name': 'photo.png'},
                content=b'\x89PNG',
                headers={**_auth(), 'Content-Type': 'image/png'},
            )
            file_id = up.json()['file']['id']
            share = await c.post(f'/api/files/{file_id}/share', json={}, headers=_auth())

        assert up.status_code == 201
        assert up.json()['file']['mime_type'] == 'image/png'
        assert up.json()['file']['size'] == 4
        assert share.status_code == 200

    @pytest.mark.asyncio
    async def test_upload_requires_auth(self, client):
        async with client as c:
            resp = await c.post('/api/files', params={'name': 'a.txt'}, content=b'x')
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_empty_upload_rejected(self, client):
        async with client as c:
            resp = await c.post(
                '/api/files', params={'name': 'a.txt'}, content=b'', headers=_auth(),
            )
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_non_numeric_content_length_rejected(self, client):
        async with client as c:
            resp = await c.post(
                '/api/files',
                params={'name': 'a.txt'},
                content=b'x',
                headers={**_auth(), 'Content-Length': 'lots'},
            )
        assert resp.status_code == 400
        assert resp.json()['error'] == 'malformed_input'

    @pytest.mark.asyncio
    async def test_oversized_content_length_rejected_before_read(self, client, app_parts):
        files = app_parts[2]
        async with client as c:
            resp = await c.post(
                '/api/files',
                params={'name': 'big.bin'},
                content=b'x',
                headers={**_auth(), 'Content-Length': str(MAX_UPLOAD_BYTES + 1)},
            )
        assert resp.status_code == 413
        assert resp.json()['error'] == 'payload_too_large'
        assert files._files.keys() == {'file-1', 'file-2'}

    @pytest.mark.asyncio
    async def test_oversized_chunked_body_rejected(self, client, monkeypatch):
        monkeypatch.setattr('fileshare.files.MAX_UPLOAD_BYTES', 8)

        async def body():
            for _ in range(4):
                yield b'abcd'

        async with client as c:
            resp = await c.post(
                '/api/files', params={'name': 'a.txt'}, content=body(), headers=_auth(),
            )
        assert resp.status_code == 413

    @pytest.mark.asyncio
    async def test_upload_burst_limited(self, client):
        async with client as c:
            statuses = [
                (await c.post(
                    '/api/files', params={'name': f'{i}.txt'}, content=b'x', headers=_auth(),
                )).status_code
                for i in range(11)
            ]
        assert statuses[:10] == [201] * 10
        assert statuses[10] == 429
