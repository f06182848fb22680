"""
FastAPI layer exposing background removal.

Endpoints:
 - GET /health
 - POST /remove-bg
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import threading
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Response
from pydantic import BaseModel, HttpUrl
import requests

from . import config
from .errors import InvalidImageError, ModelConfigurationError, UnusableOutputError
from .pipeline import BackgroundRemover
from .postprocessing import encode_png
from .preprocessing import load_rgba_from_bytes

logger = logging.getLogger(__name__)

_REMOVER: Optional[BackgroundRemover] = None
_SLOTS: Optional[threading.BoundedSemaphore] = None
_LOCK = threading.Lock()


@asynccontextmanager
async def lifespan(_app: FastAPI):
    yield
    close_remover()


app = FastAPI(title="Background Removal Service", version="0.1.0", lifespan=lifespan)


class RemoveBgRequest(BaseModel):
    imageUrl: HttpUrl


def _build_remover() -> BackgroundRemover:
    settings = config.get_settings()
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
    if settings.model_path is None:
        raise ModelConfigurationError("BGREMOVER_MODEL_PATH is required")
    return BackgroundRemover(
        settings.model_path,
        settings.model_options(),
        device=settings.device(),
        backend=settings.model_backend,
    )


def get_remover() -> BackgroundRemover:
    """
    Return the remover shared by all requests.

    The model is loaded once on first access; concurrent first requests wait
    for that load instead of each building their own session.
    """
    global _REMOVER
    if _REMOVER is not None:
        return _REMOVER

    with _LOCK:
        if _REMOVER is None:
            _REMOVER = _build_remover()
    return _REMOVER


def _inference_slots() -> threading.BoundedSemaphore:
    global _SLOTS
    if _SLOTS is not None:
        return _SLOTS

    with _LOCK:
        if _SLOTS is None:
            _SLOTS = threading.BoundedSemaphore(config.get_settings().max_concurrency)
    return _SLOTS


def close_remover() -> None:
    global _REMOVER
    with _LOCK:
        remover, _REMOVER = _REMOVER, None
    if remover is not None:
        remover.close()


def _download_image(url: str) -> bytes:
    settings = config.get_settings()
    resp = requests.get(url, timeout=(5, settings.request_timeout_seconds))
    resp.raise_for_status()
    return resp.content


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/remove-bg", response_class=Response)
def remove_bg(body: RemoveBgRequest, remover: BackgroundRemover = Depends(get_remover)):
    try:
        image_bytes = _download_image(str(body.imageUrl))
    except requests.RequestException as exc:
        logger.exception("Failed to download image: %s", exc)
        raise HTTPException(status_code=400, detail="Could not download image") from exc

    try:
        image = load_rgba_from_bytes(image_bytes)
        try:
            with _inference_slots():
                result = remover.remove_background(image)
        finally:
            image.close()
        png_bytes = encode_png(result, clear_transparent=config.get_settings().clear_transparent)
    except InvalidImageError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except UnusableOutputError as exc:
        logger.exception("Model output unusable: %s", exc)
        raise HTTPException(status_code=502, detail="Model produced unusable output") from exc
    except Exception as exc:  # noqa: BLE001
        logger.exception("Background removal failed: %s", exc)
        raise HTTPException(status_code=500, detail="Background removal failed") from exc

    return Response(content=png_bytes, media_type="image/png")
