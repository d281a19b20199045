import asyncio
import json
from pathlib import Path
from typing import List

import typer

from .config import Settings
from .decode import CONTEXTS, DecodeError, DecodeRouter, InitializationError, RequestCancelledError, is_raw_format
from .dedup import group_images
from .logging import get_logger
from .models import ImageRecord
from .quality import analyze_focus
from .regions import (
    HaarFaceDetector,
    NoFacesError,
    available_methods,
    detect_faces,
    propose_crop,
    suggest_crop,
)

app = typer.Typer(help="photocull - offline photo culling toolkit", no_args_is_help=True)

settings = Settings.from_env()

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".tif", ".tiff", ".bmp", ".webp"}


def _check_isolation(value: str) -> str:
    if value not in CONTEXTS:
        raise typer.BadParameter(f"must be one of {sorted(CONTEXTS)}")
    return value


def _make_router(isolation: str) -> DecodeRouter:
    return DecodeRouter(context_factory=CONTEXTS[isolation], request_timeout=settings.request_timeout)


def _collect_images(directory: Path) -> List[Path]:
    paths = []
    for path in sorted(directory.iterdir()):
        if path.is_file() and (path.suffix.lower() in IMAGE_EXTENSIONS or is_raw_format(path.name)):
            paths.append(path)
    return paths


async def _load_previews(paths: List[Path], isolation: str, width: int, height: int) -> List[ImageRecord]:
    logger = get_logger(__name__)
    records = []
    async with _make_router(isolation) as router:
        for path in paths:
            try:
                result = await router.generate_preview(path.read_bytes(), width, height)
            except DecodeError as exc:
                logger.warning(f"Skipping {path.name}: {exc}")
                continue
            record = ImageRecord(id=path.name, file_name=path.name, preview=result.pixels, metadata=result.metadata)
            record.focus_score = analyze_focus(result.pixels).focus_score
            records.append(record)
    return records


@app.command()
def group(
    directory: Path = typer.Argument(..., exists=True, file_okay=False, help="Folder of photos to group"),
    threshold: int = typer.Option(settings.similarity_threshold, help="Maximum hash distance within a group"),
    ssim_threshold: float = typer.Option(settings.ssim_threshold, help="Minimum SSIM for borderline members"),
    use_ssim: bool = typer.Option(settings.use_ssim, "--ssim/--no-ssim", help="Confirm borderline matches with SSIM"),
    isolation: str = typer.Option(settings.decode_isolation, callback=_check_isolation, help="Decode in a 'process' or a 'thread'"),
    as_json: bool = typer.Option(False, "--json", help="Print groups as JSON"),
) -> None:
    """
    Group near-duplicate shots in a folder and suggest a pick for each group.
    """
    logger = get_logger(__name__)

    paths = _collect_images(directory)
    if not paths:
        logger.warning(f"No images found in {directory}")
        return

    width, height = settings.preview_size
    try:
        records = asyncio.run(_load_previews(paths, isolation, width, height))
    except (InitializationError, RequestCancelledError) as exc:
        logger.error(f"Decoder unavailable: {exc}")
        raise typer.Exit(code=2) from exc

    groups = group_images(
        records,
        threshold=threshold,
        ssim_threshold=ssim_threshold,
        use_ssim=use_ssim,
        borderline_margin=settings.borderline_margin,
        hash_size=settings.hash_size,
    )

    if as_json:
        payload = [
            {"group_id": g.group_id, "members": list(g.member_ids), "distances": list(g.distances), "pick": g.effective_pick}
            for g in groups
        ]
        typer.echo(json.dumps(payload, indent=2))
        return

    for g in groups:
        if len(g) > 1:
            typer.echo(f"{g.group_id}: {', '.join(g.member_ids)} (pick: {g.effective_pick})")
        else:
            typer.echo(f"{g.group_id}: {g.member_ids[0]}")
    duplicates = sum(len(g) - 1 for g in groups)
    typer.echo(f"{len(records)} images, {len(groups)} groups, {duplicates} duplicates")


@app.command()
def crop(
    image: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help="Photo to crop"),
    method: str = typer.Option(settings.crop_method, help=f"One of {', '.join(available_methods())}"),
    padding: float = typer.Option(settings.crop_padding, help="Inset as a fraction of the crop"),
    min_crop_ratio: float = typer.Option(settings.min_crop_ratio, help="Minimum fraction of the image kept"),
    faces: bool = typer.Option(False, "--faces/--no-faces", help="Detect faces and crop around them when found"),
    isolation: str = typer.Option(settings.decode_isolation, callback=_check_isolation, help="Decode in a 'process' or a 'thread'"),
) -> None:
    """
    Propose a crop for one photo and print it as JSON (preview pixel coordinates).
    """
    logger = get_logger(__name__)

    width, height = settings.preview_size
    try:
        records = asyncio.run(_load_previews([image], isolation, width, height))
    except (InitializationError, RequestCancelledError) as exc:
        logger.error(f"Decoder unavailable: {exc}")
        raise typer.Exit(code=2) from exc
    if not records:
        logger.error(f"Could not decode {image}")
        raise typer.Exit(code=1)
    record = records[0]

    try:
        if faces:
            detect_faces(record, HaarFaceDetector())
            proposal = suggest_crop(
                record,
                fallback_method=method,
                padding=padding,
                min_crop_ratio=min_crop_ratio,
                face_padding=settings.face_padding,
            )
        else:
            proposal = propose_crop(record.preview, method=method, padding=padding, min_crop_ratio=min_crop_ratio)
    except NoFacesError as exc:
        logger.error(f"No faces found in {image.name}; pick a geometric --method to crop it")
        raise typer.Exit(code=1) from exc
    except ValueError as exc:
        logger.error(f"Cannot crop {image.name}: {exc}")
        raise typer.Exit(code=1) from exc

    output = proposal.to_dict()
    output["image_width"] = record.width
    output["image_height"] = record.height
    typer.echo(json.dumps(output))


@app.command()
def thumbnail(
    image: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help="Photo to shrink"),
    out: Path = typer.Argument(..., help="Where to write the thumbnail"),
    width: int = typer.Option(settings.thumbnail_size[0], help="Maximum thumbnail width"),
    height: int = typer.Option(settings.thumbnail_size[1], help="Maximum thumbnail height"),
    isolation: str = typer.Option(settings.decode_isolation, callback=_check_isolation, help="Decode in a 'process' or a 'thread'"),
) -> None:
    """
    Write a thumbnail of a RAW or ordinary photo.
    """
    logger = get_logger(__name__)

    async def run():
        async with _make_router(isolation) as router:
            return await router.generate_thumbnail(image.read_bytes(), width, height)

    try:
        result = asyncio.run(run())
    except (InitializationError, RequestCancelledError) as exc:
        logger.error(f"Decoder unavailable: {exc}")
        raise typer.Exit(code=2) from exc
    except DecodeError as exc:
        logger.error(f"Failed to decode {image.name}: {exc}")
        raise typer.Exit(code=1) from exc

    out.parent.mkdir(parents=True, exist_ok=True)
    result.to_image().save(out)
    typer.echo(f"Wrote {result.width}x{result.height} thumbnail to {out}")


@app.command("is-raw")
def is_raw(names: List[str] = typer.Argument(..., help="File names to check")) -> None:
    """
    Report whether each file name has a camera RAW extension.
    """
    for name in names:
        typer.echo(f"{name}: {'raw' if is_raw_format(name) else 'not raw'}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
