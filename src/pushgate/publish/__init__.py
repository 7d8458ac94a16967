"""Coverage report publishing."""

from pushgate.publish.codecov import (
    DEFAULT_SERVICE_URL,
    PublishDestination,
    PublishFailure,
    PublishResult,
    ReportPublisher,
    render_upload_payload,
)

__all__ = [
    "DEFAULT_SERVICE_URL",
    "PublishDestination",
    "PublishFailure",
    "PublishResult",
    "ReportPublisher",
    "render_upload_payload",
]
