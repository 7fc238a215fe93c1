"""Style presets — fixed suffixes appended to a prompt."""

from __future__ import annotations

STYLE_PRESETS: dict[str, str] = {
    "none": "",
    "photorealistic": (
        ", photorealistic, high-resolution photography, detailed, sharp focus,"
        " professional photography"
    ),
    "anime": ", anime style, Japanese animation, vibrant colors, cel-shaded, manga-inspired",
    "watercolor": (
        ", watercolor painting style, soft brushstrokes, flowing colors, artistic,"
        " traditional watercolor on paper"
    ),
    "oil-painting": (
        ", oil painting style, textured brushstrokes, rich colors, classical art technique,"
        " canvas texture"
    ),
    "pixel-art": ", pixel art style, 8-bit, retro video game aesthetic, blocky pixels, nostalgic",
    "3d-render": ", 3D render, CGI, Blender style, realistic lighting, raytraced, octane render",
    "sketch": (
        ", pencil sketch style, hand-drawn, graphite, charcoal drawing, artistic sketch on paper"
    ),
    "pop-art": (
        ", pop art style, bold colors, comic book style, Roy Lichtenstein inspired, halftone dots"
    ),
    "minimalist": (
        ", minimalist style, clean lines, simple shapes, flat design, negative space, modern"
    ),
    "cinematic": (
        ", cinematic style, dramatic lighting, movie poster aesthetic, film grain, wide aspect,"
        " epic"
    ),
}


def apply_style_preset(prompt: str, preset: str | None) -> str:
    """Append the preset's suffix. Unknown or empty presets leave the prompt unchanged."""
    if not preset:
        return prompt
    return prompt + STYLE_PRESETS.get(preset, "")
