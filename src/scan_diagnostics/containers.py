"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from supabase import create_client

from scan_diagnostics.adapters.openai_analysis_client import OpenAIAnalysisClient
from scan_diagnostics.adapters.pydicom_converter import PydicomRasterConverter
from scan_diagnostics.adapters.supabase_image_store import SupabaseImageStore
from scan_diagnostics.adapters.supabase_report_repository import (
    SupabaseReportRepository,
)
from scan_diagnostics.adapters.supabase_session_repository import (
    SupabaseSessionRepository,
)
from scan_diagnostics.config import Settings
from scan_diagnostics.services.analysis import AnalysisService
from scan_diagnostics.services.conversion import ConversionService
from scan_diagnostics.services.reports import ReportAggregator
from scan_diagnostics.services.sessions import PipelineOptions, SessionOrchestrator


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    orchestrator: SessionOrchestrator
    close_resources: Callable[[], Awaitable[None]]


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    supabase_client = create_client(
        resolved_settings.supabase_url, resolved_settings.supabase_service_key
    )
    analysis_client = OpenAIAnalysisClient.create(
        api_key=resolved_settings.openai_api_key,
        base_url=resolved_settings.openai_base_url,
        timeout=resolved_settings.analysis_timeout_seconds,
    )
    orchestrator = SessionOrchestrator(
        session_repository=SupabaseSessionRepository(supabase_client),
        report_repository=SupabaseReportRepository(supabase_client),
        conversion_service=ConversionService(
            converter=PydicomRasterConverter(),
            image_store=SupabaseImageStore(
                client=supabase_client,
                bucket=resolved_settings.supabase_images_bucket,
            ),
        ),
        analysis_service=AnalysisService(
            client=analysis_client,
            model=resolved_settings.openai_model,
            max_output_tokens=resolved_settings.analysis_max_output_tokens,
        ),
        aggregator=ReportAggregator(analysis_model=resolved_settings.openai_model),
        options=PipelineOptions.from_settings(resolved_settings),
    )

    async def close_resources() -> None:
        await analysis_client.close()

    return AppContainer(
        settings=resolved_settings,
        orchestrator=orchestrator,
        close_resources=close_resources,
    )
