"""
Command-line entry point: remove the background from one image or a batch
of images and write RGBA PNGs to disk.

    bgremover single -m u2net.onnx -i photo.jpg -o photo.png
    bgremover batch -m u2net.onnx -i a.jpg b.jpg -o out/ -c 4
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
import sys
import time
from typing import List, Optional, Sequence

from .batch import process_batch
from .config import ModelConfig, device_from_index, get_settings
from .errors import BackgroundRemovalError, ModelConfigurationError, OutputCollisionError
from .pipeline import BackgroundRemover
from .postprocessing import save_png

logger = logging.getLogger(__name__)

COMMANDS = {"single", "batch"}


def _non_negative_int(value: str) -> int:
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError("must be a non-negative integer")
    return number


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError("must be a positive integer")
    return number


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("-m", "--model", required=True, help="Path to the ONNX or TorchScript model")
    common.add_argument(
        "-p", "--parameter", default="input_image", help="Image input parameter name for the model (default: input_image)"
    )
    common.add_argument(
        "-s", "--size", type=_positive_int, default=320, help="Size of the image (NxN) expected by the model (default: 320)"
    )
    common.add_argument(
        "-g", "--gpu", type=_non_negative_int, default=None, help="Run on the GPU with this device id instead of the CPU"
    )
    common.add_argument("--backend", default="auto", choices=["auto", "onnx", "torchscript"], help="Model runtime")
    common.add_argument(
        "--keep-transparent-color",
        action="store_true",
        help="Keep original color data under fully transparent pixels in the PNG",
    )

    parser = argparse.ArgumentParser(prog="bgremover", description="Remove the background from images")
    subparsers = parser.add_subparsers(dest="command", required=True)

    single = subparsers.add_parser("single", parents=[common], help="Remove the background from a single file")
    single.add_argument("-i", "--input", required=True, help="Input image to remove the background from")
    single.add_argument("-o", "--output", required=True, help="Output path for the RGBA PNG")

    batch = subparsers.add_parser("batch", parents=[common], help="Remove the background from multiple images")
    batch.add_argument("-i", "--input", required=True, nargs="+", help="One or more images")
    batch.add_argument("-o", "--output", required=True, help="Output directory for the RGBA PNGs")
    batch.add_argument(
        "-c", "--concurrency", type=_positive_int, default=1, help="Max number of concurrent removals (default: 1)"
    )
    batch.add_argument("-f", "--prefix", default="", help="Prefix for output filenames")
    return parser


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    args: List[str] = list(sys.argv[1:] if argv is None else argv)
    # `single` is the default command.
    if args and args[0] not in COMMANDS and args[0] not in {"-h", "--help"}:
        args.insert(0, "single")
    return build_parser().parse_args(args)


def _load_remover(args: argparse.Namespace) -> BackgroundRemover:
    logger.info("Loading model: %s", Path(args.model).name)
    return BackgroundRemover(
        args.model,
        ModelConfig.square(args.size, input_parameter_name=args.parameter),
        device=device_from_index(args.gpu),
        backend=args.backend,
    )


def run_single(args: argparse.Namespace) -> int:
    output_path = Path(args.output)
    if output_path.resolve() == Path(args.input).resolve():
        raise OutputCollisionError(f"Output {output_path} would overwrite the input file")

    with _load_remover(args) as remover:
        logger.info("Processing %s", args.input)
        image = remover.remove_background(args.input)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    save_png(image, output_path, clear_transparent=not args.keep_transparent_color)
    print(f"Wrote RGBA output to {output_path}")
    return 0


def run_batch(args: argparse.Namespace) -> int:
    with _load_remover(args) as remover:
        written = process_batch(
            remover,
            args.input,
            args.output,
            concurrency=args.concurrency,
            prefix=args.prefix,
            clear_transparent=not args.keep_transparent_color,
        )
    print(f"Wrote {len(written)} RGBA output(s) to {args.output}")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=getattr(logging, get_settings().log_level.upper(), logging.INFO))

    started = time.perf_counter()
    try:
        if args.command == "batch":
            code = run_batch(args)
        else:
            code = run_single(args)
    except ModelConfigurationError as exc:
        print(f"Could not load model: {exc}", file=sys.stderr)
        return 1
    except OutputCollisionError as exc:
        print(f"{exc}", file=sys.stderr)
        return 1
    except BackgroundRemovalError as exc:
        print(f"Background removal failed: {exc}", file=sys.stderr)
        return 1
    except OSError as exc:
        # FileNotFoundError, PermissionError and other file access issues
        print(f"{type(exc).__name__}: {exc}", file=sys.stderr)
        return 1

    elapsed_ms = (time.perf_counter() - started) * 1000.0
    print(f"Background removed in {elapsed_ms:.1f}ms")
    return code


if __name__ == "__main__":
    sys.exit(main())
