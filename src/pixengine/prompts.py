"""Per-feature prompt templates.

Native image models (Gemini, fal.ai) return image parts directly and get a
system instruction. Chat-style gateways (OpenRouter) answer with text, so
their prompts ask for the result as a markdown image link that the codec can
extract.
"""

from enum import Enum

from pixengine.models.requests import Feature


class PromptStyle(str, Enum):
    NATIVE = "native"
    CHAT = "chat"


NATIVE_TEMPLATES: dict[Feature, str] = {
    Feature.RETOUCH: (
        "You are a precision digital artist. Edit the image based on the prompt ONLY in the "
        "white areas of the mask. The black areas of the mask must remain completely untouched. "
        "The edit must be seamless and hyper-realistic.\n\nUser's request: \"{prompt}\""
    ),
    Feature.BACKGROUND: (
        "Isolate the main subject and replace the background. Subject must be preserved "
        "perfectly. The new background should realistically match the subject's lighting and "
        "perspective.\n\nUser's request: \"{prompt}\""
    ),
    Feature.GENERATE_IMAGE: "{prompt}",
    Feature.MAGIC_EDIT: "{prompt}",
    Feature.COMPOSE: "{prompt}",
}

NATIVE_LOGO_NEW = (
    "You are a professional logo designer AI. Create a unique, high-quality logo based on the "
    "user's description. Focus on symbolic iconography.\n\nUser's request: \"{prompt}\""
)
NATIVE_LOGO_EDIT = (
    "You are a professional logo designer AI. Modify the existing logo or place a new logo on "
    "the provided background based on the user's description.\n\nUser's request: \"{prompt}\""
)

CHAT_TEMPLATES: dict[Feature, str] = {
    Feature.RETOUCH: (
        "Edit the first image based on the user request: \"{prompt}\". Use the second image as a "
        "mask (white areas are editable, black areas must remain unchanged). Return the final "
        "edited image. Please provide the response as a markdown image link."
    ),
    Feature.BACKGROUND: (
        "Remove the background of this image and replace it with: \"{prompt}\". Keep the main "
        "subject exactly as is. Return the final image as a markdown image link."
    ),
    Feature.GENERATE_IMAGE: (
        "Generate a photorealistic image of: {prompt}. Return the image as a markdown image link."
    ),
    Feature.MAGIC_EDIT: (
        "Edit this image: \"{prompt}\". Make it photorealistic. Return the final image as a "
        "markdown image link."
    ),
    Feature.COMPOSE: (
        "Compose these two images together based on this instruction: \"{prompt}\". Return the "
        "final composed image as a markdown image link."
    ),
}

CHAT_LOGO_NEW = "Create a logo: \"{prompt}\". Return the image as a markdown image link."
CHAT_LOGO_EDIT = (
    "Using the provided image as context/background, create/modify a logo: \"{prompt}\". "
    "Return the final image as a markdown image link."
)

# Minimum number of source images each feature needs
REQUIRED_IMAGES: dict[Feature, int] = {
    Feature.RETOUCH: 2,
    Feature.BACKGROUND: 1,
    Feature.GENERATE_IMAGE: 0,
    Feature.LOGO: 0,
    Feature.MAGIC_EDIT: 1,
    Feature.COMPOSE: 2,
}


def compose_prompt(feature: Feature, prompt: str, style: PromptStyle, image_count: int = 0) -> str:
    """Build the provider-facing prompt for a feature."""
    prompt = prompt.strip()
    if feature == Feature.LOGO:
        if style == PromptStyle.CHAT:
            template = CHAT_LOGO_EDIT if image_count else CHAT_LOGO_NEW
        else:
            template = NATIVE_LOGO_EDIT if image_count else NATIVE_LOGO_NEW
    elif style == PromptStyle.CHAT:
        template = CHAT_TEMPLATES[feature]
    else:
        template = NATIVE_TEMPLATES[feature]
    return template.format(prompt=prompt)


def check_image_count(feature: Feature, image_count: int) -> str | None:
    """Return a problem description when a feature lacks source images."""
    required = REQUIRED_IMAGES[feature]
    if image_count < required:
        return f"Feature {feature.value} needs {required} source image(s), got {image_count}"
    return None
