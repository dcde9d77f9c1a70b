#!/usr/bin/env python3
# CLI entry point for Diffusion Studio
# Drives a running backend: generate, inpaint, build masks, manage the gallery

import argparse
import base64
import json
import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from PIL import Image

from diffusion_studio.gallery import GalleryCorruptError, GalleryStore
from diffusion_studio.inputs import KIND_INPAINTING, KIND_TEXT_TO_IMAGE
from diffusion_studio.mask import (
    Stroke,
    encode_png_base64,
    fit_canvas_size,
    rasterize_mask,
)
from diffusion_studio.studio_client import DEFAULT_API_URL, StudioClient, StudioError

DEFAULT_GALLERY_PATH = "./gallery.json"


def _read_image_base64(path: str) -> str:
    """Load an image file as raw base64 (no data-URI prefix)."""
    return base64.b64encode(Path(path).read_bytes()).decode("ascii")


def _load_strokes(path: str) -> list[Stroke]:
    """Read strokes saved by the mask editor.

    Expected format: ``[{"points": [x0, y0, x1, y1, ...], "width": 20,
    "tool": "brush"}, ...]``.
    """
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return [
        Stroke.from_flat(item["points"], width=item.get("width", 20), tool=item.get("tool", "brush"))
        for item in data
    ]


def _client(args: argparse.Namespace) -> StudioClient:
    return StudioClient(
        api_url=args.api_url,
        auth_token=args.token,
        max_polls=args.max_polls,
    )


def _save_to_gallery(args: argparse.Namespace, urls: list[str], kind: str, params: dict) -> None:
    if not args.save:
        return
    store = GalleryStore(args.gallery)
    # Images are not persisted in the gallery file
    parameters = {k: v for k, v in params.items() if k not in ("image", "mask")}
    for url in urls:
        try:
            item = store.add(url, params["prompt"], kind, parameters)
        except GalleryCorruptError as e:
            print(f"  Not saved: {e}")
            return
        print(f"  Saved to gallery: {item.id}")


def _print_outputs(urls: list[str]) -> None:
    print("\nOutput:")
    for url in urls:
        print(f"  {url}")


def cmd_generate(args: argparse.Namespace) -> int:
    params: dict = {"prompt": args.prompt}
    if args.negative_prompt:
        params["negative_prompt"] = args.negative_prompt
    for key in ("width", "height", "num_inference_steps", "guidance_scale", "seed"):
        value = getattr(args, key)
        if value is not None:
            params[key] = value

    print(f"Generating: {args.prompt}")
    with _client(args) as client:
        try:
            urls = client.generate_image(params)
        except StudioError as e:
            print(f"Error: {e}")
            return 1

    _print_outputs(urls)
    _save_to_gallery(args, urls, KIND_TEXT_TO_IMAGE, params)
    return 0


def cmd_inpaint(args: argparse.Namespace) -> int:
    for path in (args.image, args.mask):
        if not Path(path).exists():
            print(f"Error: File does not exist: {path}")
            return 1

    params: dict = {
        "image": _read_image_base64(args.image),
        "mask": _read_image_base64(args.mask),
        "prompt": args.prompt,
    }
    if args.negative_prompt:
        params["negative_prompt"] = args.negative_prompt
    for key in ("num_inference_steps", "guidance_scale", "scheduler", "seed"):
        value = getattr(args, key)
        if value is not None:
            params[key] = value

    print(f"Inpainting {args.image}: {args.prompt}")
    with _client(args) as client:
        try:
            urls = client.inpaint_image(params)
        except StudioError as e:
            print(f"Error: {e}")
            return 1

    _print_outputs(urls)
    _save_to_gallery(args, urls, KIND_INPAINTING, params)
    return 0


def cmd_mask(args: argparse.Namespace) -> int:
    try:
        strokes = _load_strokes(args.strokes)
    except (OSError, ValueError, KeyError, TypeError) as e:
        print(f"Error: Could not load strokes from {args.strokes}: {e}")
        return 1

    if args.reference:
        if not Path(args.reference).exists():
            print(f"Error: File does not exist: {args.reference}")
            return 1
        try:
            with Image.open(args.reference) as ref:
                size = fit_canvas_size(*ref.size)
        except (OSError, ValueError) as e:
            print(f"Error: Could not read reference image {args.reference}: {e}")
            return 1
    else:
        size = (args.width, args.height)

    mask = rasterize_mask(strokes, size)
    if args.out.endswith(".b64"):
        Path(args.out).write_text(encode_png_base64(mask), encoding="ascii")
    else:
        mask.save(args.out, format="PNG")
    print(f"Mask written: {args.out} ({size[0]}x{size[1]}, {len(strokes)} strokes)")
    return 0


def cmd_gallery(args: argparse.Namespace) -> int:
    store = GalleryStore(args.gallery)

    if args.gallery_command == "delete":
        try:
            deleted = store.delete(args.item_id)
        except GalleryCorruptError as e:
            print(f"Error: {e}")
            return 1
        if deleted:
            print(f"Deleted {args.item_id}")
            return 0
        print(f"Error: No gallery item with id {args.item_id}")
        return 1

    items = store.list_items(args.type)
    if not items:
        print("Gallery is empty")
        return 0
    for item in items:
        print(f"{item.id}  [{item.type}]  {item.timestamp}")
        print(f"    {item.prompt}")
        print(f"    {item.image_url}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Diffusion Studio - Generate and edit images through the backend"
    )
    parser.add_argument(
        "--api-url",
        default=os.environ.get("DIFFUSION_STUDIO_API_URL", DEFAULT_API_URL),
        help=f"Backend base URL (default: {DEFAULT_API_URL})",
    )
    parser.add_argument(
        "--token",
        default=os.environ.get("DIFFUSION_STUDIO_TOKEN"),
        help="Bearer token when the backend requires auth (or set DIFFUSION_STUDIO_TOKEN)",
    )
    parser.add_argument(
        "--max-polls",
        type=int,
        default=60,
        help="Maximum status checks before giving up (default: 60)",
    )
    parser.add_argument(
        "--gallery",
        default=os.environ.get("DIFFUSION_STUDIO_GALLERY", DEFAULT_GALLERY_PATH),
        help=f"Gallery file (default: {DEFAULT_GALLERY_PATH})",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    gen = sub.add_parser("generate", help="Text-to-image generation")
    gen.add_argument("--prompt", required=True)
    gen.add_argument("--negative-prompt")
    gen.add_argument("--width", type=int)
    gen.add_argument("--height", type=int)
    gen.add_argument("--num-inference-steps", type=int)
    gen.add_argument("--guidance-scale", type=float)
    gen.add_argument("--seed", type=int)
    gen.add_argument("--save", action="store_true", help="Append results to the gallery")
    gen.set_defaults(func=cmd_generate)

    inp = sub.add_parser("inpaint", help="Repaint the masked region of an image")
    inp.add_argument("--image", required=True, help="Source image (PNG)")
    inp.add_argument("--mask", required=True, help="Mask image, white = repaint")
    inp.add_argument("--prompt", required=True)
    inp.add_argument("--negative-prompt")
    inp.add_argument("--num-inference-steps", type=int)
    inp.add_argument("--guidance-scale", type=float)
    inp.add_argument("--scheduler")
    inp.add_argument("--seed", type=int)
    inp.add_argument("--save", action="store_true", help="Append results to the gallery")
    inp.set_defaults(func=cmd_inpaint)

    msk = sub.add_parser("mask", help="Rasterize editor strokes into a mask PNG")
    msk.add_argument("--strokes", required=True, help="JSON file of strokes")
    msk.add_argument("--out", required=True, help="Output path (.png, or .b64 for base64 text)")
    msk.add_argument("--reference", help="Size the canvas from this image, as the editor does")
    msk.add_argument("--width", type=int, default=512)
    msk.add_argument("--height", type=int, default=512)
    msk.set_defaults(func=cmd_mask)

    gal = sub.add_parser("gallery", help="List or delete saved generations")
    gal_sub = gal.add_subparsers(dest="gallery_command", required=True)
    gal_list = gal_sub.add_parser("list")
    gal_list.add_argument(
        "--type",
        choices=["all", KIND_TEXT_TO_IMAGE, KIND_INPAINTING],
        default="all",
    )
    gal_delete = gal_sub.add_parser("delete")
    gal_delete.add_argument("item_id")
    gal.set_defaults(func=cmd_gallery)

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
