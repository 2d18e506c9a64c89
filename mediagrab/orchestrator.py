"""Drive a download through its strategy ladder.

One call is a strictly sequential state machine:
classify -> select plan -> (execute -> verify -> clean up on failure)* ->
succeeded or exhausted. Failures never escape ``request_download``; they
come back as a ``DownloadOutcome``.
"""
from __future__ import annotations

import logging
import os
import random
import re
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from mediagrab import cleaner, verifier
from mediagrab.config import Settings
from mediagrab.errors import ErrorReason, ExecutionError, ExecutionTimeout, FailureHint, hint_from_output
from mediagrab.executor import execute
from mediagrab.models import (
    DownloadOutcome,
    FetchThenTranscode,
    FlatAttempts,
    InvocationDescriptor,
    MediaKind,
    PlatformTag,
)
from mediagrab.platforms import classify, is_supported_url
from mediagrab.strategies import StrategyCatalog, UserAgentPool

logger = logging.getLogger(__name__)

Executor = Callable[[InvocationDescriptor], object]

FAILURE_MESSAGES = {
    FailureHint.ANTI_BOT: "{platform} is rate limiting or asking for bot verification.",
    FailureHint.PRIVATE: "This {platform} content is private or needs a login.",
    FailureHint.REGION_LOCKED: "This {platform} content is not available in the server's region.",
    FailureHint.BLOCKED: "{platform} refused the request.",
    FailureHint.UNAVAILABLE: "This {platform} content is unavailable or was removed.",
    FailureHint.TOO_LARGE: "The file is larger than the {limit} MB limit.",
    FailureHint.UNSUPPORTED_URL: "The extractor does not recognise this URL.",
}


def slugify(title: Optional[str], fallback: str, max_length: int = 60) -> str:
    """ASCII, filesystem-safe stem for an output file name."""
    text = re.sub(r'[\\/*?:"<>|]', "", title or "").replace("\n", " ").replace("\r", " ").strip()
    text = text.encode("ascii", "ignore").decode("ascii")
    text = re.sub(r"[^A-Za-z0-9._-]+", "_", text).strip("._-")
    return text[:max_length].rstrip("._-") or fallback


@dataclass
class LadderResult:
    """What happened while walking one ordered list of descriptors."""

    success: bool
    attempts: int = 0
    strategy: Optional[str] = None
    cause: Optional[ErrorReason] = None
    hint: Optional[FailureHint] = None
    detail: Optional[str] = None


class Orchestrator:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        catalog: Optional[StrategyCatalog] = None,
        executor: Optional[Executor] = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.settings = settings or Settings.from_env()
        self._rng = rng or random.Random()
        self.catalog = catalog or StrategyCatalog(self.settings, UserAgentPool(self._rng))
        self._executor = executor or self._run_process
        self._sleep = sleep

    def _run_process(self, descriptor: InvocationDescriptor) -> str:
        return execute(
            descriptor,
            output_limit=self.settings.output_buffer_bytes,
            cwd=self.settings.download_dir,
            sleep=self._sleep,
        )

    def output_path_for(self, platform: PlatformTag, media_kind: MediaKind, title: Optional[str] = None) -> str:
        """``{title-or-platform}_{token}.{ext}``; the token keeps concurrent calls apart."""
        stem = slugify(title, platform.value)
        return os.path.join(self.settings.download_dir, f"{stem}_{uuid.uuid4().hex}.{media_kind.extension}")

    def request_download(
        self,
        url: str,
        media_kind: MediaKind,
        quality: Optional[str] = "",
        title: Optional[str] = None,
    ) -> DownloadOutcome:
        media_kind = MediaKind(media_kind)
        platform = classify(url)
        if not is_supported_url(url):
            logger.info("Refusing non-http URL %r", url)
            return DownloadOutcome(
                success=False,
                platform=platform,
                media_kind=media_kind,
                error_reason=ErrorReason.CLASSIFICATION_UNSUPPORTED,
                cause=ErrorReason.CLASSIFICATION_UNSUPPORTED,
                message="Only http(s) links can be downloaded.",
            )

        os.makedirs(self.settings.download_dir, exist_ok=True)
        output_path = self.output_path_for(platform, media_kind, title)
        plan = self.catalog.plan_for(platform, media_kind, quality, output_path, url)
        logger.info("Starting %s %s download (quality=%r): %s", platform.value, media_kind.value, quality, url)

        if isinstance(plan, FetchThenTranscode):
            return self._run_pipeline(plan, platform, media_kind, output_path)
        if isinstance(plan, FlatAttempts):
            return self._run_flat(plan, platform, media_kind, output_path)
        raise TypeError(f"Unknown download plan {type(plan).__name__}")

    def _run_flat(
        self,
        plan: FlatAttempts,
        platform: PlatformTag,
        media_kind: MediaKind,
        output_path: str,
    ) -> DownloadOutcome:
        result = self._run_ladder(plan.descriptors, output_path, pause=True)
        if result.success:
            return DownloadOutcome(
                success=True,
                platform=platform,
                media_kind=media_kind,
                filepath=output_path,
                strategy=result.strategy,
                attempts=result.attempts,
            )
        reason = ErrorReason.EXHAUSTED_FAILED
        if platform is PlatformTag.GENERIC and result.hint is FailureHint.UNSUPPORTED_URL:
            reason = ErrorReason.CLASSIFICATION_UNSUPPORTED
        logger.warning("All %d %s strategies failed for %s", result.attempts, platform.value, media_kind.value)
        return self._failure(platform, media_kind, reason, result)

    def _run_pipeline(
        self,
        plan: FetchThenTranscode,
        platform: PlatformTag,
        media_kind: MediaKind,
        output_path: str,
    ) -> DownloadOutcome:
        fetched = self._run_ladder(plan.fetch, plan.intermediate_path, pause=True)
        if not fetched.success:
            logger.warning("Fetch stage failed for %s %s; skipping transcode", platform.value, media_kind.value)
            return self._failure(platform, media_kind, ErrorReason.PIPELINE_STAGE_FAILED, fetched, stage="fetch")

        try:
            transcoded = self._run_ladder(plan.transcode, output_path, pause=False)
        finally:
            cleaner.cleanup(plan.intermediate_path)

        attempts = fetched.attempts + transcoded.attempts
        if not transcoded.success:
            logger.warning("Transcode stage failed for %s %s", platform.value, media_kind.value)
            transcoded.attempts = attempts
            return self._failure(platform, media_kind, ErrorReason.PIPELINE_STAGE_FAILED, transcoded, stage="transcode")
        return DownloadOutcome(
            success=True,
            platform=platform,
            media_kind=media_kind,
            filepath=output_path,
            strategy=f"{fetched.strategy} + {transcoded.strategy}",
            attempts=attempts,
        )

    def _run_ladder(self, descriptors: Sequence[InvocationDescriptor], target: str, *, pause: bool) -> LadderResult:
        result = LadderResult(success=False)
        total = len(descriptors)
        for index, descriptor in enumerate(descriptors, start=1):
            logger.info("Trying strategy %d/%d: %s", index, total, descriptor.name)
            result.attempts += 1
            result.strategy = descriptor.name
            error: Optional[ExecutionError] = None
            try:
                self._executor(descriptor)
            except ExecutionError as exc:
                error = exc
                logger.info("Strategy %s failed: %s", descriptor.name, exc.message)

            # Some tools exit non-zero after writing a usable file, so verify regardless.
            if verifier.verify(target, self.settings.min_file_bytes):
                cleaner.cleanup(target, keep=target)
                logger.info("Strategy %s succeeded (%d bytes)", descriptor.name, os.path.getsize(target))
                result.success = True
                return result

            cleaner.cleanup(target)
            if isinstance(error, ExecutionTimeout):
                result.cause = ErrorReason.EXECUTION_TIMEOUT
            elif error is not None:
                result.cause = ErrorReason.EXECUTION_FAILED
            else:
                result.cause = ErrorReason.VERIFICATION_FAILED
            if error is not None:
                result.detail = error.output or error.message
                result.hint = hint_from_output(error.output) or result.hint

            if pause and index < total:
                self._sleep(self.settings.retry_delay + self._rng.uniform(0, self.settings.retry_jitter))
        return result

    def _failure(
        self,
        platform: PlatformTag,
        media_kind: MediaKind,
        reason: ErrorReason,
        result: LadderResult,
        stage: Optional[str] = None,
    ) -> DownloadOutcome:
        return DownloadOutcome(
            success=False,
            platform=platform,
            media_kind=media_kind,
            error_reason=reason,
            cause=result.cause,
            hint=result.hint,
            stage=stage,
            strategy=result.strategy,
            attempts=result.attempts,
            message=self._message(platform, media_kind, reason, result, stage),
        )

    def _message(
        self,
        platform: PlatformTag,
        media_kind: MediaKind,
        reason: ErrorReason,
        result: LadderResult,
        stage: Optional[str],
    ) -> str:
        name = platform.value.capitalize()
        if result.hint in FAILURE_MESSAGES:
            return FAILURE_MESSAGES[result.hint].format(platform=name, limit=self.settings.max_filesize_mb)
        if reason is ErrorReason.CLASSIFICATION_UNSUPPORTED:
            return "This site is not supported."
        if stage == "transcode":
            return f"The {name} video was fetched but could not be converted to audio."
        if result.cause is ErrorReason.EXECUTION_TIMEOUT:
            return f"{name} {media_kind.value} download timed out."
        return f"{name} {media_kind.value} download failed after {result.attempts} attempts. Check the link."


_default: Optional[Orchestrator] = None
_default_lock = threading.Lock()


def default_orchestrator() -> Orchestrator:
    global _default
    with _default_lock:
        if _default is None:
            _default = Orchestrator()
        return _default


def request_download(url: str, media_kind: MediaKind, quality: Optional[str] = "", title: Optional[str] = None) -> DownloadOutcome:
    """Module-level entry point backed by a lazily built default ``Orchestrator``."""
    return default_orchestrator().request_download(url, media_kind, quality, title)
