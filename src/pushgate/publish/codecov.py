"""
pushgate — coverage report publisher

File: src/pushgate/publish/codecov.py
Last updated: 2026-10-19

Purpose
- Upload a normalized lcov report to a Codecov-compatible service.

Protocol (v4 upload)
- ``POST {service_url}/upload/v4`` with commit/branch/build/slug query parameters and the
  upload token in the ``Authorization`` header. The plain-text response holds the report
  URL on the first line and a pre-signed storage URL on the second.
- ``PUT`` the report payload to the storage URL.

Failure policy
- Transport errors, non-2xx responses, malformed responses and a missing token become a
  failed ``PublishResult``. Whether that fails the pipeline is decided by the stage's
  fatality (``fail_ci_if_error``), not here.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from pushgate.coverage.report import CoverageReport

DEFAULT_SERVICE_URL = "https://codecov.io"
UPLOAD_PATH = "/upload/v4"
REPORT_FILE_NAME = "lcov.info"


class PublishFailure(RuntimeError):
    """Raised when a coverage report could not be delivered."""


@dataclass(frozen=True, slots=True)
class PublishDestination:
    """Where and as whom to upload. ``token`` is resolved from the environment by callers."""

    slug: str
    token: str | None = None
    service_url: str = DEFAULT_SERVICE_URL
    fail_ci_if_error: bool = True
    commit: str | None = None
    branch: str | None = None
    build: str | None = None
    service: str = "github-actions"
    flags: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.slug.strip() or "/" not in self.slug:
            raise ValueError("PublishDestination.slug must look like 'owner/repository'")
        object.__setattr__(self, "service_url", self.service_url.rstrip("/"))
        object.__setattr__(self, "flags", tuple(self.flags))

    def __repr__(self) -> str:
        token_state = "set" if self.token else "unset"
        return (
            f"PublishDestination(slug={self.slug!r}, service_url={self.service_url!r}, "
            f"token=<{token_state}>, fail_ci_if_error={self.fail_ci_if_error})"
        )

    @classmethod
    def from_config(
        cls,
        section: Mapping[str, Any],
        *,
        slug: str,
        environ: Mapping[str, str],
    ) -> PublishDestination:
        token_env = str(section.get("token_env", "CODECOV_TOKEN"))
        token = environ.get(token_env, "").strip() or None
        return cls(
            slug=slug,
            token=token,
            service_url=str(section.get("service_url", DEFAULT_SERVICE_URL)),
            fail_ci_if_error=bool(section.get("fail_ci_if_error", True)),
            commit=_env_or_none(environ, "GITHUB_SHA"),
            branch=_env_or_none(environ, "GITHUB_REF_NAME"),
            build=_env_or_none(environ, "GITHUB_RUN_ID"),
            flags=tuple(section.get("flags", ())),
        )

    def query_params(self) -> dict[str, str]:
        params = {"slug": self.slug, "service": self.service, "package": "pushgate"}
        if self.commit:
            params["commit"] = self.commit
        if self.branch:
            params["branch"] = self.branch
        if self.build:
            params["build"] = self.build
        if self.flags:
            params["flags"] = ",".join(self.flags)
        return params


@dataclass(frozen=True, slots=True)
class PublishResult:
    """Success carries the service's report URL; failure carries the error text."""

    success: bool
    slug: str
    report_url: str | None = None
    error: str | None = None


class ReportPublisher:
    """Codecov v4 uploader over ``httpx.AsyncClient``."""

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 60.0,
        logger: Any | None = None,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self._client = client
        self._timeout_seconds = timeout_seconds
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    async def publish(
        self,
        report: CoverageReport,
        destination: PublishDestination,
    ) -> PublishResult:
        try:
            report_url = await self._upload(report, destination)
        except PublishFailure as exc:
            self._logger.warning(
                "coverage_upload_failed",
                slug=destination.slug,
                error=str(exc),
                fatal=destination.fail_ci_if_error,
            )
            return PublishResult(success=False, slug=destination.slug, error=str(exc))

        self._logger.info("coverage_uploaded", slug=destination.slug, report_url=report_url)
        return PublishResult(success=True, slug=destination.slug, report_url=report_url)

    async def _upload(self, report: CoverageReport, destination: PublishDestination) -> str:
        if destination.token is None:
            raise PublishFailure(f"no upload token available for {destination.slug}")
        if report.is_empty:
            raise PublishFailure("refusing to upload an empty coverage report")

        if self._client is not None:
            return await self._upload_with(self._client, report, destination)
        async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
            return await self._upload_with(client, report, destination)

    async def _upload_with(
        self,
        client: httpx.AsyncClient,
        report: CoverageReport,
        destination: PublishDestination,
    ) -> str:
        try:
            response = await client.post(
                f"{destination.service_url}{UPLOAD_PATH}",
                params=destination.query_params(),
                headers={
                    "Accept": "text/plain",
                    "Authorization": f"token {destination.token}",
                },
            )
            response.raise_for_status()
            report_url, storage_url = _parse_upload_response(response.text)

            stored = await client.put(
                storage_url,
                content=render_upload_payload(report).encode("utf-8"),
                headers={"Content-Type": "text/plain"},
            )
            stored.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise PublishFailure(
                f"coverage service answered {exc.response.status_code} "
                f"for {exc.request.method} {exc.request.url.host}{exc.request.url.path}"
            ) from exc
        except httpx.HTTPError as exc:
            raise PublishFailure(f"coverage upload failed: {type(exc).__name__}: {exc}") from exc
        return report_url


def render_upload_payload(report: CoverageReport) -> str:
    """Codecov upload body: network section, then the tracefile, then the EOF marker."""

    network = "\n".join(report.per_file)
    return (
        f"{network}\n<<<<<< network\n"
        f"# path={REPORT_FILE_NAME}\n{report.to_lcov()}"
        "<<<<<< EOF\n"
    )


def _parse_upload_response(text: str) -> tuple[str, str]:
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    if len(lines) < 2:
        raise PublishFailure("coverage service returned no storage URL")
    report_url, storage_url = lines[0], lines[1]
    if not storage_url.startswith(("http://", "https://")):
        raise PublishFailure("coverage service returned an invalid storage URL")
    return report_url, storage_url


def _env_or_none(environ: Mapping[str, str], name: str) -> str | None:
    value = environ.get(name, "").strip()
    return value or None


__all__ = [
    "DEFAULT_SERVICE_URL",
    "PublishDestination",
    "PublishFailure",
    "PublishResult",
    "ReportPublisher",
    "render_upload_payload",
]
