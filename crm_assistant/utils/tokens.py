"""Token estimation for rate limiting and message validation."""

import tiktoken

from crm_assistant.utils.logging import get_logger

logger = get_logger(__name__)


class TokenEstimator:
    """Approximate token counts with tiktoken, falling back to 4 chars per token.

    The encoding is loaded lazily because tiktoken may need to fetch it.
    """

    def __init__(self, encoding_name: str = "cl100k_base", tokenizer: tiktoken.Encoding | None = None):
        """Initialize the estimator.

        Args:
            encoding_name: tiktoken encoding to load on first use
            tokenizer: Pre-loaded encoding (skips lazy loading)
        """
        self.encoding_name = encoding_name
        self.tokenizer = tokenizer
        self._loaded = tokenizer is not None

    def _get_tokenizer(self) -> tiktoken.Encoding | None:
        if not self._loaded:
            self._loaded = True
            try:
                self.tokenizer = tiktoken.get_encoding(self.encoding_name)
            except Exception as e:
                logger.warning(f"Tokenizer unavailable, using character estimate: {e}")
                self.tokenizer = None
        return self.tokenizer

    def count(self, text: str) -> int:
        """Estimate the token count of text."""
        tokenizer = self._get_tokenizer()
        try:
            return len(tokenizer.encode(text)) if tokenizer else len(text) // 4
        except Exception:
            # Fallback: roughly 4 characters per token
            return len(text) // 4

    def validate(self, text: str, max_tokens: int) -> None:
        """Validate that text does not exceed a token limit.

        Raises:
            ValueError: If text exceeds the limit
        """
        token_count = self.count(text)
        if token_count > max_tokens:
            raise ValueError(f"Message exceeds token limit: {token_count} tokens > {max_tokens} limit")


_token_estimator: TokenEstimator | None = None


def get_token_estimator() -> TokenEstimator:
    """Get or create the token estimator instance."""
    global _token_estimator
    if _token_estimator is None:
        _token_estimator = TokenEstimator()
    return _token_estimator
