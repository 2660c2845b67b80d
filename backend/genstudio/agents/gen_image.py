from __future__ import annotations

from genstudio.clients.gemini import GeminiClient, ProviderError
from genstudio.core.errors import CredentialMissing, NoOutputProduced, TransientProviderError
from genstudio.core.logging import log
from genstudio.core.models import ImageParameters

IMAGE_MIME_TYPE = "image/png"


async def generate(client: GeminiClient, params: ImageParameters) -> str:
    """Generates one image and returns it as a PNG data URI.

    Single round trip, no retries.

    Args:
        client: Gemini API client
        params: Prompt and aspect ratio

    Returns:
        ``data:image/png;base64,...`` reference

    Raises:
        CredentialMissing: If no API key is configured
        NoOutputProduced: If the provider returned no images
        TransientProviderError: On any other provider failure
    """
    if not client.has_api_key:
        raise CredentialMissing(
            "API key is not configured. Please set the API_KEY environment variable."
        )

    log.info(f"imagen_generate_start aspect={params.aspect_ratio} prompt_len={len(params.prompt)}")
    try:
        images = await client.generate_images(
            params.prompt,
            params.aspect_ratio,
            number_of_images=1,
            mime_type=IMAGE_MIME_TYPE,
        )
    except ProviderError as e:
        raise TransientProviderError(e.message) from e

    if not images:
        raise NoOutputProduced("Image generation failed or returned no images.")

    log.info(f"imagen_generate_complete size_kb={len(images[0]) * 3 // 4 // 1024}")
    return f"data:{IMAGE_MIME_TYPE};base64,{images[0]}"
