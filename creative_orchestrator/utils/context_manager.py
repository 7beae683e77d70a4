"""Token budgeting for text fed back into the planning conversation."""

from typing import List, Dict, Any, Optional
import tiktoken
import logging
import re

logger = logging.getLogger(__name__)


class ContextManager:
    """Keeps tool observations and collected materials within token limits."""

    def __init__(self, model: str = "gpt-5.2", max_tokens: int = 8000):
        """
        Initialize context manager.

        Args:
            model: Model name for token encoding
            max_tokens: Maximum tokens allowed
        """
        try:
            self.encoding = tiktoken.encoding_for_model(model)
        except KeyError:
            # Fallback to cl100k_base for unknown models
            self.encoding = tiktoken.get_encoding("cl100k_base")

        self.max_tokens = max_tokens

    def count_tokens(self, text: str) -> int:
        return len(self.encoding.encode(text))

    def _sentence_split(self, text: str) -> List[str]:
        """Split text into sentences with a simple regex."""
        normalized = re.sub(r"\s+", " ", text.strip())
        if not normalized:
            return []
        parts = re.split(r"(?<=[.!?])\s+", normalized)
        return [p.strip() for p in parts if p.strip()]

    def _keyword_set(self, text: str) -> set[str]:
        """Extract a rough keyword set from text."""
        stopwords = {
            "the", "a", "an", "and", "or", "but", "if", "then", "else", "to", "of",
            "in", "on", "for", "with", "without", "by", "at", "from", "as", "is",
            "are", "was", "were", "be", "been", "being", "it", "this", "that", "these",
            "those", "we", "you", "they", "he", "she", "i", "our", "your", "their",
            "its", "can", "could", "should", "would", "will", "may", "might", "must"
        }
        words = re.findall(r"[a-zA-Z0-9_-]+", text.lower())
        return {w for w in words if w not in stopwords and len(w) > 2}

    def _compress_text(
        self,
        text: str,
        max_tokens: int,
        focus_text: str = ""
    ) -> str:
        """
        Compress text by selecting the most relevant sentences.
        This is extractive (no generation) and keeps sentence order.
        """
        tokens = self.encoding.encode(text)
        if len(tokens) <= max_tokens:
            return text

        sentences = self._sentence_split(text)
        if not sentences:
            return self.encoding.decode(tokens[:max_tokens])

        focus_keywords = self._keyword_set(focus_text)
        scored = []
        for idx, sentence in enumerate(sentences):
            words = self._keyword_set(sentence)
            overlap = len(words & focus_keywords) if focus_keywords else 0
            # Favor relevance first, then moderate length.
            score = (overlap * 2) + (min(len(sentence), 160) / 160)
            scored.append((score, idx, sentence))

        scored.sort(key=lambda x: (-x[0], x[1]))
        selected = []
        running_tokens = 0
        for _, idx, sentence in scored:
            sentence_tokens = len(self.encoding.encode(sentence))
            if running_tokens + sentence_tokens > max_tokens:
                continue
            selected.append((idx, sentence))
            running_tokens += sentence_tokens
            if running_tokens >= max_tokens:
                break

        if not selected:
            # A single sentence longer than the budget: hard cut it.
            return self.encoding.decode(self.encoding.encode(scored[0][2])[:max_tokens])

        selected.sort(key=lambda x: x[0])
        return " ".join([s for _, s in selected])

    def fit(self, text: str, max_tokens: Optional[int] = None, focus_text: str = "") -> str:
        """
        Compress ``text`` to at most ``max_tokens`` (default: the manager's limit).

        Args:
            text: Text to fit
            max_tokens: Token budget for this text
            focus_text: Biases which sentences survive

        Returns:
            The original text when it already fits, else an extractive summary
        """
        budget = max_tokens or self.max_tokens
        tokens = self.encoding.encode(text)
        if len(tokens) <= budget:
            return text
        logger.warning(
            "Context exceeds token budget (tokens=%d, max=%d). Compressing.",
            len(tokens),
            budget
        )
        return self._compress_text(text, budget, focus_text=focus_text)

    def summarize_search_results(
        self,
        query: str,
        answer: Optional[str],
        results: List[Dict[str, Any]],
        max_tokens: int = 1200,
        max_sources: int = 5
    ) -> str:
        """
        Render search output as a compact "Summary / Details" block.

        Args:
            query: Query that produced the results
            answer: Provider's synthesized answer, if any
            results: Search results with title, url, content
            max_tokens: Token budget for the whole block
            max_sources: Maximum sources listed

        Returns:
            Summary text suitable for collected materials
        """
        lines = [f"Search: {query}"]
        if answer:
            lines.append(f"Summary: {answer}")
        if results:
            lines.append("Details:")
        for item in results[:max_sources]:
            title = item.get("title", "").strip() or "Untitled"
            url = item.get("url", "")
            content = re.sub(r"\s+", " ", item.get("content", "")).strip()
            lines.append(f"- {title} ({url}): {content}")

        return self.fit("\n".join(lines), max_tokens=max_tokens, focus_text=query)
