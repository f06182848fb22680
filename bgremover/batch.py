"""
Batch processing over many image files.

Reuses one shared `BackgroundRemover`; parallelism is bounded by
`concurrency` worker threads so calls do not all compete for the same
inference session at once.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
import logging
from pathlib import Path
from typing import Iterable, List, Union

from .errors import OutputCollisionError
from .pipeline import BackgroundRemover
from .postprocessing import save_png

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def output_path_for(input_path: PathLike, output_dir: PathLike, prefix: str = "") -> Path:
    return Path(output_dir) / f"{prefix}{Path(input_path).stem}.png"


def plan_outputs(input_paths: Iterable[PathLike], output_dir: PathLike, prefix: str = "") -> List[Path]:
    """
    Map each input to its output path.

    Raises:
        OutputCollisionError: when an output would overwrite one of the inputs, or two
            inputs would write the same output.
    """
    inputs = [Path(p) for p in input_paths]
    resolved_inputs = {p.resolve() for p in inputs}
    outputs = [output_path_for(p, output_dir, prefix) for p in inputs]
    seen = set()
    for out in outputs:
        resolved = out.resolve()
        if resolved in resolved_inputs:
            raise OutputCollisionError(f"Output {out} would overwrite an input file; use another output directory or a prefix")
        if resolved in seen:
            raise OutputCollisionError(f"More than one input would be written to {out}")
        seen.add(resolved)
    return outputs


def process_batch(
    remover: BackgroundRemover,
    input_paths: Iterable[PathLike],
    output_dir: PathLike,
    concurrency: int = 1,
    prefix: str = "",
    clear_transparent: bool = True,
) -> List[Path]:
    """
    Remove backgrounds from `input_paths` and write PNGs into `output_dir`.

    Returns the written paths in input order. The first failing image's
    exception propagates once the pool has drained.
    """
    if concurrency < 1:
        raise ValueError("concurrency must be at least 1")
    inputs = [Path(p) for p in input_paths]
    outputs = plan_outputs(inputs, output_dir, prefix)
    Path(output_dir).mkdir(parents=True, exist_ok=True)

    def _process(pair) -> Path:
        input_path, output_path = pair
        image = remover.remove_background(input_path)
        try:
            logger.info("Saving %s", output_path)
            save_png(image, output_path, clear_transparent=clear_transparent)
        finally:
            image.close()
        return output_path

    logger.info("Processing %d file(s) with concurrency=%d", len(inputs), concurrency)
    with ThreadPoolExecutor(max_workers=concurrency) as pool:
        return list(pool.map(_process, zip(inputs, outputs)))
