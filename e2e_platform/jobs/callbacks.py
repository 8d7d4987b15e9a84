"""
Completion callbacks.

POSTs a JSON summary of a finished job to the callback URL supplied at
submission. Delivery is attempted once; failures are logged and dropped.
"""

import asyncio
from typing import Any, Dict, Optional

import aiohttp

from ..core.logging_config import get_logger
from .models import Job


USER_AGENT = "E2E-Platform/1.0"


def build_callback_payload(job: Job, download_base_url: Optional[str] = None) -> Dict[str, Any]:
    """Payload delivered to a job's callback URL."""
    download_url = None
    bundle_path = None
    if job.artifacts is not None:
        bundle_path = job.artifacts.bundle_path
        if download_base_url:
            download_url = f"{download_base_url.rstrip('/')}/{job.artifacts.bundle_name}"

    return {
        "job_id": job.id,
        "project_label": job.project_label,
        "name": job.name,
        "status": job.state.value,
        "timestamp": (job.timestamps.ended or job.timestamps.created).isoformat(),
        "artifacts_ready": job.artifacts_ready,
        "bundle_path": bundle_path,
        "download_url": download_url,
        "packaging_error": job.packaging_error,
        "report": {
            "passed": job.counts.passed,
            "failed": job.counts.failed,
            "duration_ms": job.duration_ms,
            "errors": [error.model_dump(mode="json") for error in job.errors],
        },
    }


class CallbackNotifier:
    """Sends completion callbacks with aiohttp."""

    def __init__(self, timeout: float = 30, download_base_url: Optional[str] = None):
        self.timeout = timeout
        self.download_base_url = download_base_url
        self.logger = get_logger(__name__)

    async def notify(self, job: Job) -> bool:
        """
        Deliver the completion callback for ``job``.

        Returns:
            True if the receiver answered with a 2xx status
        """
        if not job.callback_url:
            return False

        payload = build_callback_payload(job, self.download_base_url)
        logger = get_logger(__name__, job_id=job.id, stage="callback")

        try:
            async with aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as session:
                async with session.post(
                    job.callback_url,
                    json=payload,
                    headers={
                        "Content-Type": "application/json",
                        "User-Agent": USER_AGENT,
                    },
                ) as response:
                    if 200 <= response.status < 300:
                        logger.info(f"Callback sent successfully to {job.callback_url}")
                        return True
                    logger.warning(
                        f"Callback to {job.callback_url} failed with status {response.status}"
                    )
                    return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(
                f"Failed to send callback: {e}",
                extra={"metadata": {"callback_url": job.callback_url}},
            )
            return False
