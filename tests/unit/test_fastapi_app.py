"""Unit tests for FastAPI application setup.

Tests cover:
- Application factory creates FastAPI instance
- CORS middleware is configured correctly
- Request logging middleware is active
- Health endpoints return expected responses
- Readiness endpoint verifies database connectivity and lifecycle status
- Window, enrollment and event routers are registered
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from httpx import ASGITransport, AsyncClient

from examclock.config import ExamclockConfig, SchedulerConfig, SweepConfig, WebConfig
from examclock.lifecycle.notifications import NullObserver
from examclock.lifecycle.service import WindowLifecycleService
from examclock.web.app import create_app
from examclock.web.middleware import RequestLoggingMiddleware


def quiet_config() -> ExamclockConfig:
    """Config with both background components disabled."""
    return ExamclockConfig(
        scheduler=SchedulerConfig(enabled=False),
        sweep=SweepConfig(enabled=False),
    )


def wire_state(app: FastAPI, session_factory: MagicMock) -> FastAPI:
    """Set the state the lifespan would normally create."""
    app.state.session_factory = session_factory
    app.state.lifecycle = WindowLifecycleService(app.state.config, session_factory)
    return app


def healthy_session_factory() -> MagicMock:
    mock_session = AsyncMock()
    mock_session.execute = AsyncMock(return_value=MagicMock())

    factory = MagicMock()
    factory.return_value.__aenter__ = AsyncMock(return_value=mock_session)
    factory.return_value.__aexit__ = AsyncMock(return_value=None)
    return factory


class TestCreateApp:
    """Test application factory function."""

    def test_returns_fastapi_instance(self) -> None:
        """Test that create_app returns a FastAPI instance."""
        app = create_app()
        assert isinstance(app, FastAPI)

    def test_app_has_correct_title(self) -> None:
        app = create_app()
        assert app.title == "Examclock"

    def test_app_has_version(self) -> None:
        app = create_app()
        assert app.version == "0.1.0"

    def test_app_stores_config_in_state(self) -> None:
        """Test that config is stored in app.state."""
        config = ExamclockConfig()
        app = create_app(config)
        assert app.state.config is config

    def test_uses_default_config_when_none_provided(self) -> None:
        app = create_app()
        assert isinstance(app.state.config, ExamclockConfig)


class TestCorsMiddleware:
    """Test CORS middleware configuration."""

    def test_cors_middleware_is_registered(self) -> None:
        config = ExamclockConfig(web=WebConfig(cors_origins=["https://example.com"]))
        app = create_app(config)

        assert any(m.cls == CORSMiddleware for m in app.user_middleware)

    def test_cors_uses_config_origins(self) -> None:
        """Test that CORS middleware uses origins from config."""
        origins = ["https://proctor.example.com", "https://admin.example.com"]
        app = create_app(ExamclockConfig(web=WebConfig(cors_origins=origins)))

        cors = next(m for m in app.user_middleware if m.cls == CORSMiddleware)
        assert cors.kwargs["allow_origins"] == origins
        assert cors.kwargs["allow_credentials"] is True
        assert cors.kwargs["allow_methods"] == ["*"]
        assert cors.kwargs["allow_headers"] == ["*"]


class TestRequestLoggingMiddleware:
    def test_logging_middleware_is_registered(self) -> None:
        app = create_app()
        assert any(m.cls == RequestLoggingMiddleware for m in app.user_middleware)


class TestHealthEndpoint:
    """Test health check endpoint."""

    @pytest.mark.asyncio
    async def test_health_endpoint_returns_ok(self) -> None:
        app = wire_state(create_app(quiet_config()), MagicMock())
        async with AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://test",
        ) as client:
            response = await client.get("/health/")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestReadinessEndpoint:
    """Test readiness check endpoint with database verification."""

    @pytest.mark.asyncio
    async def test_ready_when_db_healthy(self) -> None:
        app = wire_state(create_app(quiet_config()), healthy_session_factory())
        async with AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://test",
        ) as client:
            response = await client.get("/health/ready")

        assert response.status_code == 200
        assert response.json() == {
            "status": "ok",
            "database": "connected",
            "scheduler": False,
            "sweep": False,
            "pending_timers": 0,
        }

    @pytest.mark.asyncio
    async def test_degraded_when_enabled_components_not_running(self) -> None:
        """Enabled scheduler and sweep that were never started degrade readiness."""
        app = wire_state(create_app(ExamclockConfig()), healthy_session_factory())
        async with AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://test",
        ) as client:
            response = await client.get("/health/ready")

        data = response.json()
        assert data["status"] == "degraded"
        assert data["database"] == "connected"

    @pytest.mark.asyncio
    async def test_unhealthy_when_db_fails(self) -> None:
        factory = MagicMock()
        factory.return_value.__aenter__ = AsyncMock(
            side_effect=Exception("Database connection failed")
        )
        factory.return_value.__aexit__ = AsyncMock(return_value=None)
        app = wire_state(create_app(quiet_config()), factory)

        async with AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://test",
        ) as client:
            response = await client.get("/health/ready")

        # Still returns 200 but with unhealthy status
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "unhealthy"
        assert data["database"] == "disconnected"


class TestCorrelationId:
    """Test correlation ID handling in middleware."""

    @pytest.mark.asyncio
    async def test_response_includes_correlation_id(self) -> None:
        app = wire_state(create_app(quiet_config()), MagicMock())
        async with AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://test",
        ) as client:
            response = await client.get("/health/")

        assert "X-Correlation-ID" in response.headers

    @pytest.mark.asyncio
    async def test_response_echoes_provided_correlation_id(self) -> None:
        custom_id = "test-correlation-id-12345"
        app = wire_state(create_app(quiet_config()), MagicMock())
        async with AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://test",
        ) as client:
            response = await client.get("/health/", headers={"X-Correlation-ID": custom_id})

        assert response.headers["X-Correlation-ID"] == custom_id


class TestEventStreamDependency:
    @pytest.mark.asyncio
    async def test_stream_unavailable_without_broadcaster(self) -> None:
        app = create_app(quiet_config())
        app.state.session_factory = MagicMock()
        app.state.lifecycle = WindowLifecycleService(
            app.state.config, MagicMock(), observer=NullObserver()
        )

        async with AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://test",
        ) as client:
            response = await client.get(
                "/events/owners/6f1c2a52-3a8e-4a51-9d8a-1f0a3c1b2d4e/stream"
            )

        assert response.status_code == 503


class TestRouterRegistration:
    """Test that routers are properly registered."""

    @pytest.mark.parametrize(
        "path",
        [
            "/health/",
            "/health/ready",
            "/windows/",
            "/windows/update-statuses",
            "/windows/{window_id}",
            "/windows/{window_id}/active",
            "/windows/{window_id}/status",
            "/windows/{window_id}/toggle-enrollment",
            "/enrollments/",
            "/enrollments/{enrollment_id}",
            "/enrollments/{enrollment_id}/attendance",
            "/events/owners/{owner_id}/stream",
        ],
    )
    def test_route_exists(self, path: str) -> None:
        app = create_app()
        routes = [route.path for route in app.routes]
        assert path in routes
