"""OpenAI embeddings for insight content and summaries."""

from openai import OpenAI

from app.core.config import get_settings
from app.core.logging import get_logger

logger = get_logger(__name__)


def _get_client() -> OpenAI:
    settings = get_settings()
    return OpenAI(api_key=settings.OPENAI_API_KEY)


def embed_texts(texts: list[str]) -> list[list[float]]:
    """
    Embed texts with the configured OpenAI embedding model.

    Args:
        texts: Texts to embed

    Returns:
        One vector per text, in input order

    Raises:
        ValueError: If a vector does not have EMBEDDING_DIM dimensions
        Exception: If the OpenAI call fails
    """
    if not texts:
        return []

    settings = get_settings()

    try:
        response = _get_client().embeddings.create(model=settings.EMBEDDING_MODEL, input=texts)
    except Exception as e:
        logger.error(f"Failed to generate embeddings: {e}")
        raise

    vectors = [item.embedding for item in response.data]
    for index, vector in enumerate(vectors):
        if len(vector) != settings.EMBEDDING_DIM:
            raise ValueError(
                f"Embedding dimension mismatch for text {index}: "
                f"expected {settings.EMBEDDING_DIM}, got {len(vector)}"
            )

    logger.debug(f"Generated {len(vectors)} embeddings with {settings.EMBEDDING_MODEL}")
    return vectors


def embed_text(text: str) -> list[float]:
    """Embed a single text."""
    return embed_texts([text])[0]
