from contextlib import asynccontextmanager
import asyncio
import base64
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from studio.config import StudioConfig
from studio.controller import EngineController
from studio.core.errors import (
    DecodeFailure,
    GraphNotInitialized,
    InvalidParameter,
    NoAudioLoaded,
    NothingToExport,
    OutputUnavailable,
    PermissionDenied,
    RecordingInProgress,
    StudioError,
)
from studio.params.schema import SECTIONS

# Configure Logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("vocal-studio")

STATUS_CODES = {
    DecodeFailure: 422,
    InvalidParameter: 422,
    NoAudioLoaded: 409,
    NothingToExport: 409,
    RecordingInProgress: 409,
    PermissionDenied: 403,
    GraphNotInitialized: 503,
    OutputUnavailable: 503,
}


def create_app(config: StudioConfig = None, controller: EngineController = None) -> FastAPI:
    """Build the service around one controller. Tests pass their own config/controller."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ctl = controller or EngineController(config or StudioConfig.from_env())
        await ctl.initialize()
        app.state.controller = ctl
        app.state.lock = asyncio.Lock()
        logger.info("Studio engine ready (%s)", ctl.config.env)
        try:
            yield
        finally:
            await ctl.dispose()

    app = FastAPI(
        title="Vocal Studio Engine",
        version="1.0.0",
        description="Beat-synchronized vocal recording, effects and mixdown",
        lifespan=lifespan,
    )

    # CORS (Allow Frontend)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StudioError)
    async def studio_error_handler(request: Request, exc: StudioError):
        status = STATUS_CODES.get(type(exc), 400)
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
        return JSONResponse(status_code=status, content={"error": exc.code, "message": exc.message})

    def engine(request: Request) -> EngineController:
        return request.app.state.controller

    def analysis_payload(ctl: EngineController) -> dict:
        alignment = ctl.last_alignment
        return {
            "tempo_bpm": ctl.beat_tempo,
            "downbeat_offset": ctl.beat_downbeat_offset,
            "beat_duration": ctl.beat_duration,
            "vocal_duration": ctl.vocal_duration,
            "vocal_onset": ctl.vocal_onset,
            "alignment_shift": alignment.alignment_shift,
            "quantized_target": alignment.quantized_target,
            "state": ctl.state.value,
            "playing": ctl.is_playing,
            "recording": ctl.is_recording,
        }

    @app.get("/health")
    async def health_check(request: Request):
        return {"status": "ok", "service": "vocal-studio-engine", "state": engine(request).state.value}

    @app.post("/beat")
    async def upload_beat(request: Request):
        """Raw encoded audio in the request body. Returns the beat analysis."""
        data = await request.body()
        async with request.app.state.lock:
            ctl = engine(request)
            await ctl.load_beat(data)
            return analysis_payload(ctl)

    @app.post("/vocal")
    async def upload_vocal(request: Request):
        data = await request.body()
        async with request.app.state.lock:
            ctl = engine(request)
            await ctl.load_vocal(data)
            return analysis_payload(ctl)

    @app.delete("/vocal")
    async def clear_vocal(request: Request):
        async with request.app.state.lock:
            ctl = engine(request)
            ctl.clear_vocal_take()
            return analysis_payload(ctl)

    @app.get("/analysis")
    async def get_analysis(request: Request):
        return analysis_payload(engine(request))

    @app.get("/settings")
    async def get_settings(request: Request):
        return engine(request).settings.as_dict()

    @app.patch("/settings")
    async def patch_all_settings(params: dict, request: Request):
        """Several sections at once: {"eq": {...}, "reverb": {...}}. All or nothing."""
        async with request.app.state.lock:
            ctl = engine(request)
            applied = ctl.update_all_settings(params)
            return {"applied": applied, "settings": ctl.settings.as_dict()}

    @app.patch("/settings/{section}")
    async def patch_settings(section: str, params: dict, request: Request):
        """
        Partial update of one effect section. Values are clamped to their ranges;
        returns the applied values and the full section afterwards.
        """
        if section not in SECTIONS:
            raise InvalidParameter(f"Unknown settings section: {section}")
        async with request.app.state.lock:
            ctl = engine(request)
            applied = ctl.update_settings(section, params)
            return {"applied": applied, "settings": ctl.settings.as_dict()[section]}

    @app.post("/playback")
    async def start_playback(request: Request):
        """Play beat and vocal take together, the take snapped to the beat grid."""
        async with request.app.state.lock:
            ctl = engine(request)
            await ctl.start_playback()
            return analysis_payload(ctl)

    @app.delete("/playback")
    async def stop_playback(request: Request):
        async with request.app.state.lock:
            ctl = engine(request)
            await ctl.stop_playback()
            return analysis_payload(ctl)

    @app.post("/recording")
    async def start_recording(request: Request):
        """Open the microphone and start a take, playing the beat alongside when loaded."""
        async with request.app.state.lock:
            ctl = engine(request)
            await ctl.start_recording()
            return analysis_payload(ctl)

    @app.delete("/recording")
    async def stop_recording(request: Request):
        """Finish the take; it becomes the current vocal."""
        async with request.app.state.lock:
            ctl = engine(request)
            await ctl.stop_recording()
            return analysis_payload(ctl)

    @app.get("/waveforms")
    async def get_waveforms(request: Request):
        ctl = engine(request)
        return {"beat": ctl.beat_waveform, "vocal": ctl.vocal_waveform}

    @app.post("/export")
    async def export_mix(request: Request):
        """Returns JSON with base64-encoded audio of the full mix."""
        async with request.app.state.lock:
            media = await engine(request).export_mix()
        return {
            "audio": base64.b64encode(media.data).decode("utf-8"),
            "mime_type": media.mime_type,
            "format": media.format,
            "sample_rate": media.sample_rate,
            "duration": media.duration,
        }

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
