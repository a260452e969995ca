"""Settings validation and app factory wiring tests."""

from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from fileshare.db import SupabaseActivitySink, SupabaseShareStore
from fileshare.inmemory import InMemoryFileStorage, InMemoryShareStore
from fileshare.main import create_app
from fileshare.settings import DEFAULT_CORS_ORIGINS, ShareSettings
from fileshare.sharing.audit import LoggingActivitySink

LONG_SECRET = 's' * 32


# ── Validation ────────────────────────────────────────────────────────


class TestValidate:

    def test_local_needs_only_signing_secret(self):
        assert ShareSettings(signing_secret='dev').validate() == []

    def test_signing_secret_always_required(self):
        errors = ShareSettings().validate()
        assert errors == ['local: signing_secret is required']

    def test_non_local_requirements(self):
        errors = ShareSettings(environment='production', signing_secret='short').validate()
        assert 'production: signing_secret must be >= 32 characters' in errors
        assert 'production: supabase_url is required' in errors
        assert 'production: supabase_service_role_key is required' in errors

    def test_non_local_complete(self):
        settings = ShareSettings(
            environment='staging',
            signing_secret=LONG_SECRET,
            supabase_url='https://x.supabase.co',
            supabase_service_role_key='svc',
        )
        assert settings.validate() == []
        assert settings.uses_supabase
        assert not settings.is_local

    def test_timeouts_must_be_positive(self):
        errors = ShareSettings(
            signing_secret='dev', store_timeout_seconds=0, rate_limit_sweep_seconds=-1,
        ).validate()
        assert len(errors) == 2


# ── Environment ───────────────────────────────────────────────────────


class TestFromEnv:

    def test_defaults(self):
        settings = ShareSettings.from_env({})
        assert settings.environment == 'local'
        assert settings.signing_secret == ''
        assert settings.public_base_url == 'http://localhost:3000'
        assert settings.cors_origins == DEFAULT_CORS_ORIGINS
        assert settings.store_timeout_seconds == 10.0

    def test_reads_variables(self):
        settings = ShareSettings.from_env({
            'ENVIRONMENT': 'production',
            'URL_SIGNING_SECRET': LONG_SECRET,
            'PUBLIC_BASE_URL': 'https://files.example.com',
            'SUPABASE_URL': 'https://x.supabase.co',
            'SUPABASE_SERVICE_ROLE_KEY': 'svc',
            'STORE_TIMEOUT_SECONDS': '2.5',
            'SUPABASE_JWT_SECRET': 'jwt',
            'SUPABASE_AUDIENCE': 'files',
            'RATE_LIMIT_SWEEP_SECONDS': '30',
            'CORS_ORIGINS': 'https://a.example.com, https://b.example.com,',
        })
        assert settings.signing_secret == LONG_SECRET
        assert settings.public_base_url == 'https://files.example.com'
        assert settings.store_timeout_seconds == 2.5
        assert settings.jwt_audience == 'files'
        assert settings.rate_limit_sweep_seconds == 30.0
        assert settings.cors_origins == ('https://a.example.com', 'https://b.example.com')
        assert settings.validate() == []


# ── App factory ───────────────────────────────────────────────────────


class TestCreateApp:

    def test_invalid_settings_raise(self):
        with pytest.raises(ValueError, match='signing_secret is required'):
            create_app(ShareSettings(), configure_logs=False)

    def test_local_defaults_to_in_memory(self):
        app = create_app(ShareSettings(signing_secret='dev'), configure_logs=False)
        deps = app.state.deps
        assert isinstance(deps.share_store, InMemoryShareStore)
        assert isinstance(deps.files, InMemoryFileStorage)
        assert isinstance(deps.activity, LoggingActivitySink)
        assert app.state.rate_limiters is deps.rate_limiters

    def test_non_local_requires_file_storage(self):
        settings = ShareSettings(
            environment='production',
            signing_secret=LONG_SECRET,
            supabase_url='https://x.supabase.co',
            supabase_service_role_key='svc',
        )
        with pytest.raises(ValueError, match='requires file storage'):
            create_app(settings, configure_logs=False)

    def test_supabase_stores_when_configured(self):
        settings = ShareSettings(
            environment='production',
            signing_secret=LONG_SECRET,
            supabase_url='https://x.supabase.co',
            supabase_service_role_key='svc',
        )
        app = create_app(settings, files=InMemoryFileStorage(), configure_logs=False)
        assert isinstance(app.state.deps.share_store, SupabaseShareStore)
        assert isinstance(app.state.deps.activity, SupabaseActivitySink)

    @pytest.mark.asyncio
    async def test_lifespan_runs_compactor(self):
        app = create_app(ShareSettings(signing_secret='dev'), configure_logs=False)
        compactor = app.state.compactor

        async with app.router.lifespan_context(app):
            assert compactor.running
        assert not compactor.running

    @pytest.mark.asyncio
    async def test_validation_errors_render_as_malformed_input(self):
        app = create_app(ShareSettings(signing_secret='dev'), configure_logs=False)
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url='http://test') as c:
            resp = await c.get('/api/shared/0123456789ABCDEF', params={'action': 'zip'})
        assert resp.status_code == 400
        body = resp.json()
        assert body['success'] is False
        assert body['error'] == 'malformed_input'
