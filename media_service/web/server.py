"""FastAPI application exposing the conversion, peaks and batch endpoints."""

from __future__ import annotations

import asyncio
import contextvars
import functools
import hmac
import logging
import time
import uuid
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type, TypeVar, Union

from fastapi import Depends, FastAPI, File, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import BaseModel, ValidationError
from starlette.datastructures import MutableHeaders
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from ..bootstrap import check_dependencies
from ..config import AppConfig
from ..errors import AuthenticationError, InvalidRequestError, ServiceError, UploadTooLargeError
from ..processing.formats import (
    CONTENT_TYPES,
    FIT_OPTIONS,
    SUPPORTED_IMAGE_FORMATS,
    check_audio_upload,
)
from ..processing.images import ImageTransform, transform_image
from ..processing.waveform import (
    MAX_SAMPLES,
    MIN_SAMPLES,
    DurationProbe,
    PeakExtractor,
    resolve_sample_count,
    sample_count_in_range,
)
from ..services.archive import ZipEntrySink
from ..services.batch import (
    SAMPLES_RANGE_MESSAGE,
    ArchiveAssembler,
    AudioVariantGenerator,
    BatchInput,
    ImageVariantGenerator,
    VariantGenerator,
    index_uploads,
)
from ..services.debug import (
    DEBUG_LEVELS,
    DebugTrace,
    create_trace,
    maybe_step,
    parse_debug_level,
)
from ..services.manifest import (
    AudioVariantSpec,
    ImageVariantSpec,
    ManifestKind,
    check_file_count,
    format_validation_errors,
    parse_manifest,
)
from ..services.temp_files import temporary_upload


QueryModel = TypeVar("QueryModel", bound=BaseModel)

_REQUEST_ID_VAR: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "media_service_request_id",
    default=None,
)

API_KEY_HEADER = "X-Api-Key"
REQUEST_ID_HEADER = "X-Request-Id"
UNAUTHORIZED_MESSAGE = "Unauthorized: Invalid or missing API key"

_ARCHIVE_NAMES: Dict[str, str] = {"image": "images.zip", "audio": "audio-peaks.zip"}

_IMAGE_RESPONSES: Dict[int | str, Dict[str, Any]] = {
    200: {
        "description": "The encoded image",
        "content": {media_type: {} for media_type in sorted(set(CONTENT_TYPES.values()))},
    }
}
_ARCHIVE_RESPONSES: Dict[int | str, Dict[str, Any]] = {
    200: {"description": "Zip archive streamed as it is built", "content": {"application/zip": {}}}
}


def _new_correlation_id() -> str:
    return uuid.uuid4().hex


class RequestContextMiddleware:
    """Assign a correlation identifier to each request and echo it in the response."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_id = _new_correlation_id()
        scope_state = scope.get("state")
        if scope_state is None:
            scope_state = {}
            scope["state"] = scope_state
        if isinstance(scope_state, dict):
            scope_state["request_id"] = request_id
        else:
            setattr(scope_state, "request_id", request_id)

        async def send_with_request_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                headers.setdefault(REQUEST_ID_HEADER, request_id)
            await send(message)

        request_token = _REQUEST_ID_VAR.set(request_id)
        try:
            await self.app(scope, receive, send_with_request_id)
        finally:
            _REQUEST_ID_VAR.reset(request_token)


class ContextualLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that injects the request id into records."""

    def process(self, msg: Any, kwargs: Dict[str, Any]) -> tuple[Any, Dict[str, Any]]:  # type: ignore[override]
        extra: Dict[str, Any] = dict(self.extra)
        provided = kwargs.get("extra")
        if isinstance(provided, dict):
            extra.update(provided)
        request_id = _REQUEST_ID_VAR.get()
        if request_id:
            extra.setdefault("request_id", request_id)
        kwargs["extra"] = extra
        return msg, kwargs


LOGGER = ContextualLoggerAdapter(logging.getLogger(__name__), {})


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or _REQUEST_ID_VAR.get() or _new_correlation_id()


async def _debug_trace(
    request: Request,
    debug: Optional[str] = Query(
        None, description=f"Attach a debug trace at this level: {', '.join(DEBUG_LEVELS)}"
    ),
) -> Optional[DebugTrace]:
    trace = create_trace(parse_debug_level(debug), _request_id(request))
    request.state.debug_trace = trace
    return trace


def _current_trace(request: Request) -> Optional[DebugTrace]:
    return getattr(request.state, "debug_trace", None)


def _validate_query(model: Type[QueryModel], values: Dict[str, Any]) -> QueryModel:
    try:
        return model.model_validate({key: value for key, value in values.items() if value is not None})
    except ValidationError as error:
        raise InvalidRequestError(
            "Invalid parameters", details=format_validation_errors(error)
        ) from error


async def _image_query(
    format: str = Query("jpg", description=f"Output format: {', '.join(SUPPORTED_IMAGE_FORMATS)}"),
    width: Optional[int] = Query(None, description="Target width in pixels"),
    height: Optional[int] = Query(None, description="Target height in pixels"),
    fit: str = Query("cover", description=f"Resize mode: {', '.join(FIT_OPTIONS)}"),
) -> ImageVariantSpec:
    return _validate_query(
        ImageVariantSpec, {"format": format, "width": width, "height": height, "fit": fit}
    )


async def _audio_query(
    samples: Optional[int] = Query(
        None, description=f"Number of peaks to return ({MIN_SAMPLES}-{MAX_SAMPLES})"
    ),
    samples_per_minute: Optional[int] = Query(
        None,
        alias="samplesPerMinute",
        description="Derive the number of peaks from the duration when samples is absent",
    ),
) -> AudioVariantSpec:
    return _validate_query(
        AudioVariantSpec, {"samples": samples, "samplesPerMinute": samples_per_minute}
    )


def _request_error_details(error: RequestValidationError) -> List[str]:
    details: List[str] = []
    for issue in error.errors():
        location = [str(part) for part in issue.get("loc", ()) if part not in ("query", "body")]
        details.append(f"{'.'.join(location) or 'request'}: {issue.get('msg', 'Invalid value')}")
    return details


async def _read_upload(upload: UploadFile, limit: int) -> bytes:
    """Read *upload* into memory, refusing anything larger than *limit* bytes."""

    data = await upload.read(limit + 1)
    if len(data) > limit:
        raise UploadTooLargeError(limit)
    return data


async def _read_single_upload(
    upload: Optional[UploadFile], field: str, limit: int
) -> Tuple[str, bytes, Optional[str]]:
    if upload is None:
        raise InvalidRequestError(f"No {field} file provided")
    data = await _read_upload(upload, limit)
    return upload.filename or "", data, upload.content_type


async def _read_manifest(value: Union[UploadFile, str, None]) -> Optional[str | bytes]:
    if isinstance(value, str):
        return value if value.strip() else None
    if value is None:
        return None
    return await value.read()


async def _read_batch_uploads(files: Sequence[UploadFile], limit: int) -> List[BatchInput]:
    uploads: List[BatchInput] = []
    for upload in files:
        data = await _read_upload(upload, limit)
        uploads.append(
            BatchInput(filename=upload.filename or "", data=data, content_type=upload.content_type)
        )
    return uploads


def _debug_headers(trace: Optional[DebugTrace]) -> Dict[str, str]:
    if trace is None:
        return {}
    headers = {"X-Debug-Level": trace.level}
    if trace.duration_ms is not None:
        headers["X-Processing-Time-Ms"] = f"{trace.duration_ms:g}"
    return headers


def _error_body(
    message: str,
    *,
    details: Any = None,
    trace: Optional[DebugTrace] = None,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {"error": message}
    if details:
        body["details"] = details
    if trace is not None:
        if trace.error is None:
            trace.fail(message)
        body["debug"] = trace.to_dict()
    return body


def create_app(config: AppConfig) -> FastAPI:
    """Return a configured FastAPI application."""

    app = FastAPI(
        title="Media Service",
        description="Image conversion and audio waveform peaks over HTTP",
    )
    app.state.config = config
    app.state.started_at = time.monotonic()
    app.state.image_transformer = transform_image
    app.state.peak_extractor = PeakExtractor(config)
    app.state.duration_probe = DurationProbe(config)
    app.state.dependency_checker = check_dependencies
    app.add_middleware(RequestContextMiddleware)

    async def _require_api_key(request: Request) -> None:
        expected = config.service_api_key
        if not expected:
            return
        provided = request.headers.get(API_KEY_HEADER) or ""
        if not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
            raise AuthenticationError(UNAUTHORIZED_MESSAGE)

    @app.exception_handler(ServiceError)
    async def _handle_service_error(request: Request, exc: ServiceError) -> JSONResponse:
        trace = _current_trace(request)
        if exc.status_code >= 500:
            LOGGER.error("Request failed: %s (%s)", exc.message, exc.details)
        else:
            LOGGER.info("Request rejected: %s", exc.message)
        body = _error_body(exc.message, details=exc.details, trace=trace)
        return JSONResponse(body, status_code=exc.status_code, headers=_debug_headers(trace))

    @app.exception_handler(RequestValidationError)
    async def _handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        trace = _current_trace(request)
        details = _request_error_details(exc)
        LOGGER.info("Request rejected: invalid parameters %s", details)
        body = _error_body("Invalid parameters", details=details, trace=trace)
        return JSONResponse(body, status_code=400, headers=_debug_headers(trace))

    @app.exception_handler(StarletteHTTPException)
    async def _handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        message = "Not found" if exc.status_code == 404 else str(exc.detail)
        return JSONResponse({"error": message}, status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def _handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        LOGGER.exception("Unhandled error while serving %s", request.url.path)
        trace = _current_trace(request)
        details = str(exc) if trace is not None else None
        return JSONResponse(
            _error_body("Internal server error", details=details, trace=trace), status_code=500
        )

    @app.get("/health")
    async def health() -> JSONResponse:
        loop = asyncio.get_running_loop()
        checker = app.state.dependency_checker
        checks = await loop.run_in_executor(None, functools.partial(checker, config))
        healthy = all(checks.values())
        payload = {
            "status": "ok" if healthy else "degraded",
            "checks": checks,
            "uptime": round(time.monotonic() - app.state.started_at, 1),
        }
        return JSONResponse(payload, status_code=200 if healthy else 503)

    @app.post(
        "/v1/image/convert",
        dependencies=[Depends(_require_api_key)],
        response_class=Response,
        responses=_IMAGE_RESPONSES,
    )
    async def convert_image(
        trace: Optional[DebugTrace] = Depends(_debug_trace),
        query: ImageVariantSpec = Depends(_image_query),
        image: Optional[UploadFile] = File(None, description="Image to convert"),
    ) -> Response:
        filename, data, content_type = await _read_single_upload(
            image, "image", config.max_image_upload_bytes
        )

        transform = ImageTransform(
            format=query.format, width=query.width, height=query.height, fit=query.fit
        )
        if trace is not None:
            trace.input.update(
                name=filename,
                sizeBytes=len(data),
                contentType=content_type,
                format=transform.format,
                width=transform.width,
                height=transform.height,
                fit=transform.fit,
            )

        loop = asyncio.get_running_loop()
        operation = functools.partial(
            app.state.image_transformer,
            data,
            transform,
            max_pixels=config.image_max_input_pixels,
        )
        try:
            with maybe_step(trace, "transform"):
                output = await loop.run_in_executor(None, operation)
        except InvalidRequestError:
            raise
        except ServiceError as error:
            if trace is not None:
                trace.fail(error.message)
            raise ServiceError("Failed to process image", details=error.message) from error

        LOGGER.info("Converted %s to %s (%s bytes)", filename or "upload", transform.format, len(output))
        headers: Dict[str, str] = {}
        if trace is not None:
            trace.output.update(format=transform.format, sizeBytes=len(output))
            trace.finish()
            headers.update(_debug_headers(trace))
            headers["X-Debug-Info"] = trace.encode_header()
        return Response(content=output, media_type=CONTENT_TYPES[transform.format], headers=headers)

    @app.post("/v1/audio/peaks", dependencies=[Depends(_require_api_key)])
    async def audio_peaks(
        trace: Optional[DebugTrace] = Depends(_debug_trace),
        query: AudioVariantSpec = Depends(_audio_query),
        audio: Optional[UploadFile] = File(None, description="Audio file to analyse"),
    ) -> JSONResponse:
        filename, data, content_type = await _read_single_upload(
            audio, "audio", config.max_audio_upload_bytes
        )

        with maybe_step(trace, "validate_format"):
            extension, detected = check_audio_upload(filename, data)
        if trace is not None:
            trace.input.update(
                name=filename,
                sizeBytes=len(data),
                contentType=content_type,
                extension=extension or None,
                detectedFormat=detected,
                samples=query.samples,
                samplesPerMinute=query.samples_per_minute,
            )

        extractor: PeakExtractor = app.state.peak_extractor
        probe: DurationProbe = app.state.duration_probe
        try:
            async with temporary_upload(config.temp_root, data, extension) as path:
                duration: Optional[float] = None
                if query.samples is None:
                    with maybe_step(trace, "get_duration"):
                        duration = await probe.probe(path)
                samples = resolve_sample_count(
                    query.samples,
                    query.samples_per_minute,
                    duration,
                    default_samples_per_minute=config.default_samples_per_minute,
                )
                if not sample_count_in_range(samples):
                    raise InvalidRequestError(
                        SAMPLES_RANGE_MESSAGE, details=[f"resolved {samples} samples"]
                    )
                with maybe_step(trace, "extract_peaks"):
                    peaks = await extractor.extract(path, samples)
        except InvalidRequestError:
            raise
        except ServiceError as error:
            if trace is not None:
                trace.fail(error.message)
            raise ServiceError("Failed to extract audio peaks", details=error.message) from error

        LOGGER.info("Extracted %s peaks from %s", len(peaks), filename or "upload")
        body: Dict[str, Any] = {"peaks": peaks, "samples": len(peaks)}
        if trace is not None:
            trace.output.update(samples=len(peaks), durationSeconds=duration)
            trace.finish()
            body["debug"] = trace.to_dict()
        return JSONResponse(body, headers=_debug_headers(trace))

    async def _stream_batch(
        trace: Optional[DebugTrace],
        *,
        kind: ManifestKind,
        files: Optional[List[UploadFile]],
        manifest_part: Union[UploadFile, str, None],
        limit: int,
    ) -> StreamingResponse:
        manifest_text = await _read_manifest(manifest_part)
        if manifest_text is None:
            raise InvalidRequestError("No manifest provided")
        if not files:
            raise InvalidRequestError("No files provided")
        check_file_count(len(files), config.max_batch_files)
        uploads = await _read_batch_uploads(files, limit)

        with maybe_step(trace, "validate_manifest"):
            manifest = parse_manifest(
                manifest_text,
                [upload.filename for upload in uploads],
                kind=kind,
                max_files=config.max_batch_files,
                max_variants_per_file=config.max_variants_per_file,
            )
        indexed = index_uploads(uploads, trace)

        generator: VariantGenerator
        if kind == "image":
            generator = ImageVariantGenerator(
                config, trace=trace, transformer=app.state.image_transformer
            )
        else:
            generator = AudioVariantGenerator(
                config,
                trace=trace,
                extractor=app.state.peak_extractor,
                duration_probe=app.state.duration_probe,
            )
        plan = await generator.plan(manifest, indexed)
        LOGGER.info(
            "Streaming %s batch: %s files, %s variants",
            kind,
            len(plan.inputs),
            plan.variant_count,
        )

        assembler = ArchiveAssembler(ZipEntrySink(), trace=trace)
        headers = {"Content-Disposition": f'attachment; filename="{_ARCHIVE_NAMES[kind]}"'}
        if trace is not None:
            headers["X-Debug-Level"] = trace.level
        return StreamingResponse(
            assembler.stream(plan, generator),
            media_type="application/zip",
            headers=headers,
        )

    @app.post(
        "/v1/image/batch",
        dependencies=[Depends(_require_api_key)],
        response_class=StreamingResponse,
        responses=_ARCHIVE_RESPONSES,
    )
    async def image_batch(
        trace: Optional[DebugTrace] = Depends(_debug_trace),
        images: Optional[List[UploadFile]] = File(None, description="Images named by the manifest"),
        manifest: Union[UploadFile, str, None] = File(
            None, description="Manifest JSON, as a file part or a text field"
        ),
    ) -> StreamingResponse:
        return await _stream_batch(
            trace,
            kind="image",
            files=images,
            manifest_part=manifest,
            limit=config.max_image_upload_bytes,
        )

    @app.post(
        "/v1/audio/peaks/batch",
        dependencies=[Depends(_require_api_key)],
        response_class=StreamingResponse,
        responses=_ARCHIVE_RESPONSES,
    )
    async def audio_batch(
        trace: Optional[DebugTrace] = Depends(_debug_trace),
        audio: Optional[List[UploadFile]] = File(None, description="Audio files named by the manifest"),
        manifest: Union[UploadFile, str, None] = File(
            None, description="Manifest JSON, as a file part or a text field"
        ),
    ) -> StreamingResponse:
        return await _stream_batch(
            trace,
            kind="audio",
            files=audio,
            manifest_part=manifest,
            limit=config.max_audio_upload_bytes,
        )

    return app


__all__ = ["ContextualLoggerAdapter", "RequestContextMiddleware", "create_app"]
