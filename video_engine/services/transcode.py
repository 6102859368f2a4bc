from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlparse

import boto3
from botocore.exceptions import BotoCoreError, ClientError, ConnectionClosedError, EndpointConnectionError

from video_engine.core.config import Settings, validate_provider_settings
from video_engine.core.errors import ConfigurationError, ServiceError
from video_engine.core.logging import get_logger
from video_engine.core.retry import TransientProviderError
from video_engine.domain.models import OutputFile, RemoteJobStatus, RemoteState


class TranscodeProvider(ABC):
    """Remote transcoding service: submit a source, poll the job, list its outputs."""

    @abstractmethod
    async def submit_job(self, source_ref: str, output_profile: str) -> str: ...

    @abstractmethod
    async def poll_job(self, job_id: str) -> RemoteJobStatus: ...

    @abstractmethod
    async def fetch_outputs(self, job_id: str) -> List[OutputFile]: ...


_STATE_MAP: Dict[str, RemoteState] = {
    "SUBMITTED": "queued",
    "PROGRESSING": "progressing",
    "COMPLETE": "complete",
    "ERROR": "error",
    "CANCELED": "error",
}

_TRANSIENT_CODES = frozenset(
    {
        "TooManyRequestsException",
        "ThrottlingException",
        "InternalServerErrorException",
        "ServiceUnavailable",
        "SlowDown",
        "RequestTimeout",
    }
)


class MediaConvertProvider(TranscodeProvider):
    """AWS Elemental MediaConvert adapter.

    Local sources (``file://`` URIs) are staged to the configured S3 bucket
    before the job is created. Output profiles are MediaConvert output group
    templates taken from configuration. boto3 is synchronous, so each call is
    pushed onto a worker thread.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        mediaconvert_client: Any | None = None,
        s3_client: Any | None = None,
    ):
        validate_provider_settings(settings)
        self.settings = settings
        self.bucket = settings.aws_s3_bucket
        self.role_arn = settings.mediaconvert_role_arn
        self.profiles = settings.output_profiles
        self.logger = get_logger(component="mediaconvert")
        credentials = {
            "region_name": settings.aws_region,
            "aws_access_key_id": settings.aws_access_key_id,
            "aws_secret_access_key": settings.aws_secret_access_key,
        }
        self.client = mediaconvert_client or boto3.client(
            "mediaconvert", endpoint_url=settings.mediaconvert_endpoint_url, **credentials
        )
        self.s3 = s3_client or boto3.client("s3", **credentials)

    async def submit_job(self, source_ref: str, output_profile: str) -> str:
        if output_profile not in self.profiles:
            raise ServiceError(
                f"Unknown output profile: {output_profile}",
                details={"operation": "submit_job", "profiles": sorted(self.profiles)},
            )
        input_uri = await self._stage_source(source_ref)
        job_settings = {
            "Inputs": [
                {
                    "FileInput": input_uri,
                    "TimecodeSource": "ZEROBASED",
                    "AudioSelectors": {"Audio Selector 1": {"DefaultSelection": "DEFAULT"}},
                }
            ],
            "OutputGroups": self._output_groups(self.profiles[output_profile]),
        }
        response = await self._call(
            "create_job",
            self.client.create_job,
            Role=self.role_arn,
            Settings=job_settings,
            UserMetadata={"output_profile": output_profile},
        )
        job_id = response["Job"]["Id"]
        self.logger.info("mediaconvert_job_created", job_id=job_id, input_uri=input_uri, profile=output_profile)
        return job_id

    async def poll_job(self, job_id: str) -> RemoteJobStatus:
        job = await self._get_job(job_id)
        raw_status = job.get("Status", "")
        state = _STATE_MAP.get(raw_status)
        if state is None:
            raise ServiceError(
                f"Unexpected MediaConvert status: {raw_status}",
                details={"operation": "poll_job", "job_id": job_id},
            )
        percent = job.get("JobPercentComplete")
        reason = None
        if state == "error":
            reason = job.get("ErrorMessage") or f"MediaConvert job {raw_status.lower()}"
        return RemoteJobStatus(
            remote_state=state,
            progress_percent=float(percent) if percent is not None else None,
            reason=reason,
        )

    async def fetch_outputs(self, job_id: str) -> List[OutputFile]:
        job = await self._get_job(job_id)
        if job.get("Status") != "COMPLETE":
            raise ServiceError(
                f"MediaConvert job {job_id} is not complete",
                details={"operation": "fetch_outputs", "status": job.get("Status")},
            )
        settings = job.get("Settings") or {}
        inputs = settings.get("Inputs") or [{}]
        stem = PurePosixPath(urlparse(inputs[0].get("FileInput", "")).path).stem
        outputs: List[OutputFile] = []
        for group in settings.get("OutputGroups", []):
            destination = (
                group.get("OutputGroupSettings", {}).get("FileGroupSettings", {}).get("Destination")
                or f"s3://{self.bucket}/{group.get('Name', 'outputs')}/"
            )
            for output in group.get("Outputs", []):
                name = f"{stem}{output.get('NameModifier', '')}.{output.get('Extension', 'mp4')}"
                outputs.append(OutputFile(name=name, uri=f"{destination.rstrip('/')}/{name}"))
        return outputs

    async def _get_job(self, job_id: str) -> Dict[str, Any]:
        response = await self._call("get_job", self.client.get_job, Id=job_id)
        return response["Job"]

    async def _stage_source(self, source_ref: str) -> str:
        parsed = urlparse(source_ref)
        if parsed.scheme == "s3":
            return source_ref
        if parsed.scheme not in {"file", ""}:
            raise ServiceError(
                f"Unsupported source location: {source_ref}",
                details={"operation": "stage_source"},
            )
        path = Path(parsed.path if parsed.scheme == "file" else source_ref)
        key = f"inputs/{path.parent.name}/{path.name}"
        await self._call("upload_file", self.s3.upload_file, str(path), self.bucket, key)
        return f"s3://{self.bucket}/{key}"

    def _output_groups(self, profile: Mapping[str, Any]) -> List[Dict[str, Any]]:
        groups = []
        for group in profile.get("output_groups", []):
            name = group.get("name", "proxy")
            groups.append(
                {
                    "Name": name,
                    "OutputGroupSettings": {
                        "Type": "FILE_GROUP_SETTINGS",
                        "FileGroupSettings": {"Destination": f"s3://{self.bucket}/{name}/"},
                    },
                    "Outputs": [self._output(item) for item in group.get("outputs", [])],
                }
            )
        if not groups:
            raise ConfigurationError("Output profile defines no output groups", details={"profile": dict(profile)})
        return groups

    @staticmethod
    def _output(output: Mapping[str, Any]) -> Dict[str, Any]:
        video: Dict[str, Any] = {
            "CodecSettings": {
                "Codec": "H_264",
                "H264Settings": {
                    "RateControlMode": "QVBR",
                    "MaxBitrate": int(output.get("max_bitrate", 2_500_000)),
                    "SceneChangeDetect": "TRANSITION_DETECTION",
                },
            }
        }
        if output.get("max_height"):
            video["Height"] = int(output["max_height"])
        return {
            "NameModifier": output.get("name_modifier", "_proxy"),
            "Extension": output.get("extension", "mp4"),
            "ContainerSettings": {"Container": output.get("container", "MP4")},
            "VideoDescription": video,
            "AudioDescriptions": [
                {
                    "CodecSettings": {
                        "Codec": "AAC",
                        "AacSettings": {
                            "Bitrate": int(output.get("audio_bitrate", 96_000)),
                            "CodingMode": "CODING_MODE_2_0",
                            "SampleRate": 48_000,
                        },
                    }
                }
            ],
        }

    async def _call(self, operation: str, fn: Any, *args: Any, **kwargs: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code", "")
            if code in _TRANSIENT_CODES:
                raise TransientProviderError(f"{operation}: {code}") from exc
            raise ServiceError(
                f"MediaConvert {operation} rejected: {exc}",
                details={"operation": operation, "code": code},
            ) from exc
        except (EndpointConnectionError, ConnectionClosedError) as exc:
            raise TransientProviderError(f"{operation}: {exc}") from exc
        except BotoCoreError as exc:
            raise ServiceError(f"MediaConvert {operation} failed: {exc}", details={"operation": operation}) from exc


def get_transcode_provider(settings: Settings) -> TranscodeProvider:
    if settings.transcode_provider == "mediaconvert":
        return MediaConvertProvider(settings)
    raise ConfigurationError(f"Unsupported transcode provider: {settings.transcode_provider}")


__all__ = ["TranscodeProvider", "MediaConvertProvider", "get_transcode_provider"]
