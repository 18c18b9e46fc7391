"""Local CPU financial sentiment for article headlines using ProsusAI/finbert.

Label mapping:
    finbert "positive" → "Positive" /  +score
    finbert "negative" → "Negative" /  -score
    finbert "neutral"  → "Neutral"  /   0.0

Only enabled when ``providers.sentiment`` is true in config.yaml; the
``transformers`` dependency is the ``sentiment`` extra.
"""

from stock_events.core.logger import logger
from stock_events.providers.base import SentimentProvider, SentimentResult

_MODEL_NAME = "ProsusAI/finbert"

# FinBERT raw label → canonical label
_LABEL_MAP = {
    "positive": "Positive",
    "negative": "Negative",
    "neutral": "Neutral",
}

_NEUTRAL = SentimentResult(label="Neutral", score=0.0, raw_label="neutral", raw_score=0.0)


class FinBERTProvider(SentimentProvider):
    """Local CPU financial sentiment using ``ProsusAI/finbert``.

    The underlying HuggingFace pipeline is loaded lazily on the first call to
    :meth:`analyze` so that importing this module has zero cost.

    Args:
        model_name: HuggingFace model identifier (default ``ProsusAI/finbert``).
    """

    def __init__(self, model_name: str = _MODEL_NAME) -> None:
        self.model_name = model_name
        self._pipeline = None  # lazy-loaded

    def analyze(self, text: str) -> SentimentResult:
        """Return sentiment label and score for a headline; blank input is Neutral / 0.0."""
        text = (text or "").strip()
        if not text:
            return _NEUTRAL

        pipe = self._get_pipeline()
        raw = pipe(text, truncation=True, max_length=512)
        # Depending on the transformers version and top_k, the result is
        # list[dict] or list[list[dict]]; unwrap one level if needed.
        result = raw[0]
        if isinstance(result, list):
            result = result[0]

        raw_label: str = result["label"].lower()
        raw_score: float = float(result["score"])
        label = _LABEL_MAP.get(raw_label, "Neutral")
        score = _normalize(raw_label, raw_score)

        logger.debug(f"FinBERTProvider: [{label} / {score:+.3f}] {text[:60]!r}")
        return SentimentResult(label=label, score=score, raw_label=raw_label, raw_score=raw_score)

    def _get_pipeline(self):
        """Lazy-load the HuggingFace pipeline on first call."""
        if self._pipeline is None:
            from transformers import pipeline as hf_pipeline
            logger.info(f"FinBERTProvider: loading model '{self.model_name}' on CPU (first call only)")
            self._pipeline = hf_pipeline(
                task="text-classification",
                model=self.model_name,
                device=-1,          # CPU only
            )
        return self._pipeline


def _normalize(raw_label: str, raw_score: float) -> float:
    """Map softmax confidence → signed score in [-1.0, 1.0]."""
    if raw_label == "positive":
        return round(raw_score, 4)
    if raw_label == "negative":
        return round(-raw_score, 4)
    return 0.0
