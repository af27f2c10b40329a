import sentry_sdk

from .config import Settings, get_settings


def configure_error_monitoring(settings: Settings | None = None) -> bool:
    settings = settings or get_settings()
    if not settings.sentry_dsn:
        return False
    sentry_sdk.init(dsn=settings.sentry_dsn, environment=settings.env, traces_sample_rate=0.2)
    return True


def report_failure(error: BaseException, **tags: str) -> None:
    """Forward a per-employee failure to Sentry; a no-op when Sentry is not initialised."""
    sentry_sdk.capture_exception(error, tags={key: str(value) for key, value in tags.items()})
