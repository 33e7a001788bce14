"""Image generation tool and Pillow helpers for attached images."""

import io
from typing import Callable, Optional

from PIL import Image

from .results import ToolResult

DEFAULT_IMAGE_PROMPT = "Transform this image while keeping the main subject."
THUMBNAIL_SIZE = 256

# (prompt, anchor bytes, anchor mime type) -> (image bytes, mime type) or None
ImageGenerator = Callable[[str, bytes, str], Optional[tuple]]


def execute_image_tool(name: str, args: dict, anchor, generator: Optional[ImageGenerator]) -> ToolResult:
    """Run ``generate_image`` through the provider's image capability.

    Args:
        name: Tool name (only ``generate_image`` is known).
        args: Tool arguments; ``prompt`` describes the transformation.
        anchor: First image attached to the current message (an object with
            ``data`` and ``mime_type``), or None.
        generator: Provider image-generation callable.
    """
    if name != "generate_image":
        return ToolResult.failure(f"Unknown tool: {name}")
    if anchor is None:
        return ToolResult.failure("No anchor image provided. Please attach an image with your message.")
    if generator is None:
        return ToolResult.failure("Image generation is not available for the configured provider.")
    prompt = str(args.get("prompt") or "").strip() or DEFAULT_IMAGE_PROMPT
    try:
        produced = generator(prompt, anchor.data, anchor.mime_type or "image/png")
    except NotImplementedError as e:
        return ToolResult.failure(str(e) or "Image generation is not supported by this provider.")
    if not produced:
        return ToolResult.failure("No image was generated. The model may not support image output.")
    data, mime_type = produced
    return ToolResult.image(data, mime_type or "image/png")


def to_square_png(data: bytes, size: int = 1024) -> bytes:
    """Re-encode an image as a square RGBA PNG (image-edit endpoints need one)."""
    with Image.open(io.BytesIO(data)) as img:
        img = img.convert("RGBA")
        side = max(img.width, img.height)
        canvas = Image.new("RGBA", (side, side), (0, 0, 0, 0))
        canvas.paste(img, ((side - img.width) // 2, (side - img.height) // 2))
        if side > size:
            canvas = canvas.resize((size, size))
        out = io.BytesIO()
        canvas.save(out, format="PNG")
    return out.getvalue()


def make_thumbnail(data: bytes, mime_type: str, max_size: int = THUMBNAIL_SIZE) -> tuple[bytes, str]:
    """Downscale an image for persistence; PNG stays PNG, everything else JPEG."""
    with Image.open(io.BytesIO(data)) as img:
        img.thumbnail((max_size, max_size))
        out = io.BytesIO()
        if mime_type == "image/png":
            img.save(out, format="PNG")
            return out.getvalue(), "image/png"
        img.convert("RGB").save(out, format="JPEG", quality=85)
    return out.getvalue(), "image/jpeg"
