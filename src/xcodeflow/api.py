"""HTTP API for xcodeflow: builds, destinations, log capture and progress over FastAPI."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, model_validator

from .build import (
    BuildAction,
    BuildParams,
    BuildResult,
    PlatformOptions,
    ProjectRef,
    clean,
    list_schemes,
    run_build,
    show_build_settings,
)
from .config import Settings
from .destination import DestinationSpec, resolve_destination
from .errors import MissingDeviceSelectorError, SessionNotFoundError, ValidationError
from .executor import CommandExecutor
from .log_capture import LogCaptureRegistry
from .platforms import XcodePlatform, coerce_platform
from .progress import ProgressTracker, prefixed_sink

logger = logging.getLogger("xcodeflow.api")


class ProjectRequest(BaseModel):
    workspace_path: Optional[str] = None
    project_path: Optional[str] = None

    @model_validator(mode="after")
    def _one_path(self) -> "ProjectRequest":
        if self.workspace_path and self.project_path:
            raise ValueError("workspace_path and project_path are mutually exclusive")
        return self

    def project_ref(self) -> ProjectRef:
        return ProjectRef(workspace_path=self.workspace_path, project_path=self.project_path)


class BuildRequest(ProjectRequest):
    scheme: str
    configuration: Optional[str] = None
    platform: str = XcodePlatform.IOS_SIMULATOR.value
    device_name: Optional[str] = None
    device_id: Optional[str] = None
    use_latest_os: Optional[bool] = None
    arch: Optional[str] = None
    derived_data_path: Optional[str] = None
    extra_args: List[str] = []

    @model_validator(mode="after")
    def _path_required(self) -> "BuildRequest":
        if not (self.workspace_path or self.project_path):
            raise ValueError("either workspace_path or project_path is required")
        return self


class CleanRequest(ProjectRequest):
    scheme: Optional[str] = None
    configuration: Optional[str] = None
    derived_data_path: Optional[str] = None
    extra_args: List[str] = []


class SchemeRequest(ProjectRequest):
    scheme: str


class DestinationRequest(BaseModel):
    platform: str
    device_name: Optional[str] = None
    device_id: Optional[str] = None
    use_latest_os: bool = True
    arch: Optional[str] = None


class LogStartRequest(BaseModel):
    device_id: str
    app_identifier: str
    capture_console: bool = False


def _platform(value: str) -> XcodePlatform:
    try:
        return coerce_platform(value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


def _build_payload(result: BuildResult) -> Dict[str, Any]:
    payload = asdict(result)
    payload.pop("output", None)
    return payload


class XcodeService:
    """Everything the API needs: settings, an executor, the capture registry and progress."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.executor = CommandExecutor(progress_interval=settings.progress_interval)
        self.registry = LogCaptureRegistry(
            temp_dir=Path(settings.temp_dir),
            xcrun=settings.xcrun_path,
            retention_days=settings.log_retention_days,
        )
        self.tracker = ProgressTracker()

    def build_params(self, req: BuildRequest) -> BuildParams:
        return BuildParams(
            project=req.project_ref(),
            scheme=req.scheme,
            configuration=req.configuration or self.settings.default_configuration,
            derived_data_path=req.derived_data_path,
            extra_args=tuple(req.extra_args),
        )

    def platform_options(self, req: BuildRequest) -> PlatformOptions:
        use_latest = req.use_latest_os
        return PlatformOptions(
            platform=_platform(req.platform),
            device_name=req.device_name,
            device_id=req.device_id,
            use_latest_os=self.settings.use_latest_os if use_latest is None else use_latest,
            arch=req.arch,
        )

    async def run(self, req: BuildRequest, action: BuildAction) -> BuildResult:
        return await run_build(
            self.build_params(req),
            self.platform_options(req),
            action,
            executor=self.executor,
            progress_sink=prefixed_sink(req.scheme, self.tracker),
            xcodebuild=self.settings.xcodebuild_path,
        )


def create_api(*, service: XcodeService) -> FastAPI:
    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        await service.registry.stop_all()

    app = FastAPI(title="xcodeflow-api", lifespan=lifespan)
    settings = service.settings

    def require_token(x_xcodeflow_token: Optional[str] = Header(default=None)) -> None:
        if not settings.require_token:
            return
        if not settings.api_token:
            raise HTTPException(status_code=500, detail="api token not configured")
        if not x_xcodeflow_token or x_xcodeflow_token != settings.api_token:
            raise HTTPException(status_code=401, detail="unauthorized")

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {"ok": True}

    @app.post("/destination", dependencies=[Depends(require_token)])
    async def destination(req: DestinationRequest) -> Dict[str, Any]:
        spec = DestinationSpec(
            platform=_platform(req.platform),
            device_name=req.device_name,
            device_id=req.device_id,
            use_latest_os=req.use_latest_os,
            arch=req.arch,
        )
        try:
            return {"destination": resolve_destination(spec)}
        except MissingDeviceSelectorError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e

    @app.post("/build", dependencies=[Depends(require_token)])
    async def build(req: BuildRequest) -> Dict[str, Any]:
        return _build_payload(await service.run(req, BuildAction.BUILD))

    @app.post("/test", dependencies=[Depends(require_token)])
    async def test(req: BuildRequest) -> Dict[str, Any]:
        return _build_payload(await service.run(req, BuildAction.TEST))

    @app.post("/clean", dependencies=[Depends(require_token)])
    async def clean_project(req: CleanRequest) -> Dict[str, Any]:
        result = await clean(
            req.project_ref(),
            scheme=req.scheme,
            configuration=req.configuration,
            derived_data_path=req.derived_data_path,
            extra_args=tuple(req.extra_args),
            executor=service.executor,
            xcodebuild=settings.xcodebuild_path,
        )
        return _build_payload(result)

    @app.post("/build-settings", dependencies=[Depends(require_token)])
    async def build_settings(req: SchemeRequest) -> Dict[str, Any]:
        result = await show_build_settings(
            req.project_ref(), req.scheme, executor=service.executor, xcodebuild=settings.xcodebuild_path
        )
        return {"success": result.success, "output": result.output, "error": result.error}

    @app.post("/schemes", dependencies=[Depends(require_token)])
    async def schemes(req: ProjectRequest) -> Dict[str, Any]:
        result, names = await list_schemes(
            req.project_ref(), executor=service.executor, xcodebuild=settings.xcodebuild_path
        )
        return {"success": result.success, "schemes": names, "error": result.error}

    @app.post("/logs/start", dependencies=[Depends(require_token)])
    async def logs_start(req: LogStartRequest) -> Dict[str, Any]:
        res = await service.registry.start(req.device_id, req.app_identifier, req.capture_console)
        if res.error:
            raise HTTPException(status_code=500, detail=f"Failed to start log capture: {res.error}")
        return {"session_id": res.session_id, "artifact_path": str(res.artifact_path)}

    @app.post("/logs/{session_id}/stop", dependencies=[Depends(require_token)])
    async def logs_stop(session_id: str) -> Dict[str, Any]:
        try:
            res = await service.registry.stop(session_id)
        except SessionNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        return {"content": res.content, "error": res.error}

    @app.get("/logs", dependencies=[Depends(require_token)])
    async def logs() -> Dict[str, Any]:
        sessions = await service.registry.active_sessions()
        return {"sessions": [s.to_dict() for s in sessions]}

    @app.get("/operations", dependencies=[Depends(require_token)])
    async def operations() -> Dict[str, Any]:
        return {"operations": [u.to_dict() for u in service.tracker.active_operations()]}

    @app.exception_handler(ValidationError)
    async def _validation_error(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    return app


def create_app() -> FastAPI:
    return create_api(service=XcodeService(Settings.from_env()))


def main() -> None:
    import uvicorn

    from .logging_config import setup_logging

    settings = Settings.from_env()
    setup_logging(log_dir=settings.log_dir, level=settings.log_level)
    app = create_api(service=XcodeService(settings))
    host = os.environ.get("XCODEFLOW_API_HOST", "127.0.0.1")
    port = int(os.environ.get("XCODEFLOW_API_PORT", "8802"))
    uvicorn.run(app, host=host, port=port)
