"""
Generation Job Client.

Submits content generation jobs to the external generation service. Submission
is fire-and-request: the caller gets a JobHandle back and never waits for the
job to finish.

Usage:
    with HttpGenerationJobClient.from_settings() as client:
        handle = client.submit_generation_job(unit_id, course_id, refs, config)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Protocol, Sequence

import httpx
from loguru import logger

from config import get_settings
from studyengine.clock import utcnow
from studyengine.exceptions import GenerationJobError
from studyengine.generation.models import GenerationConfig

JOBS_PATH = "/api/v1/generation/jobs"


@dataclass
class JobHandle:
    """Reference to a submitted generation job."""

    job_id: str
    status: str = "queued"
    unit_id: Optional[str] = None
    course_id: Optional[str] = None
    submitted_at: datetime = field(default_factory=utcnow)


class GenerationJobSubmitter(Protocol):
    """Anything that can submit a generation job."""

    def submit_generation_job(
        self,
        unit_id: str,
        course_id: str,
        material_refs: Sequence[str],
        effective_config: GenerationConfig,
    ) -> JobHandle: ...


class HttpGenerationJobClient:
    """
    HTTP client for the generation job service.

    Sends the effective configuration with the job so the service generates
    exactly the counts and difficulty resolved for the learner.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["X-API-Key"] = api_key
        self._client = httpx.Client(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls) -> HttpGenerationJobClient:
        settings = get_settings()
        return cls(
            base_url=settings.generation_service_url,
            api_key=settings.generation_api_key,
            timeout=settings.generation_timeout_seconds,
        )

    def __enter__(self) -> HttpGenerationJobClient:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def submit_generation_job(
        self,
        unit_id: str,
        course_id: str,
        material_refs: Sequence[str],
        effective_config: GenerationConfig,
    ) -> JobHandle:
        """
        Submit a job and return its handle.

        Raises:
            GenerationJobError: transport failure, error status, or a response
                without a job id
        """
        body = {
            "unit_id": unit_id,
            "course_id": course_id,
            "material_refs": list(material_refs),
            "config": effective_config.model_dump(mode="json"),
            "features": effective_config.feature_counts(),
        }
        try:
            response = self._client.post(JOBS_PATH, json=body)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Generation job rejected for unit {unit_id}: {e.response.status_code}")
            raise GenerationJobError(
                f"Generation service returned {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"Generation job submission failed for unit {unit_id}: {e}")
            raise GenerationJobError(f"Generation service unreachable: {e}") from e
        except ValueError as e:
            raise GenerationJobError("Generation service returned invalid JSON") from e

        job_id = data.get("job_id") or data.get("id")
        if not job_id:
            raise GenerationJobError("Generation service response did not include a job id")

        logger.info(f"Submitted generation job {job_id} for unit {unit_id}")
        return JobHandle(
            job_id=str(job_id),
            status=data.get("status", "queued"),
            unit_id=unit_id,
            course_id=course_id,
        )
