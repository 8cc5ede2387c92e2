import asyncio
import logging
import re
from typing import Awaitable, Callable, List, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from winery_eval.config import get_settings
from winery_eval.exceptions import LLMTimeoutError
from winery_eval.models.common import round_half_up
from winery_eval.models.evaluation import MIN_SCORE, CriterionScore, EvaluationData
from winery_eval.models.rubric import Rubric, performance_level_for

T = TypeVar("T")

settings = get_settings()

SECTION_BOUNDARY = re.compile(r"(?=## Conversation)")
PARAGRAPH_BOUNDARY = "\n\n"


class _ChunkBuilder:
    """Accumulates pieces into chunks, carrying an overlap tail forward"""

    def __init__(self, max_size: int, overlap: int):
        self.max_size = max_size
        self.overlap = overlap
        self.chunks: List[str] = []
        self.current = ""
        self.context = ""

    def add(self, piece: str) -> None:
        if self.current and len(self.current) + len(piece) > self.max_size:
            self.flush()
        self.current += piece

    def flush(self) -> None:
        if not self.current:
            return
        self.chunks.append(self.context + self.current)
        self.context = self.current[-self.overlap:] if self.overlap > 0 else ""
        self.current = ""


def chunk_conversation(
    text: str,
    max_size: Optional[int] = None,
    overlap: Optional[int] = None,
    max_chunks: Optional[int] = None,
) -> List[str]:
    """
    Split a transcript into chunks no larger than max_size (plus overlap).

    Section boundaries ("## Conversation") are preferred; oversized sections
    and single-section transcripts are split on blank-line paragraphs.
    """
    max_size = max_size or settings.chunk_max_size
    overlap = settings.chunk_overlap_size if overlap is None else overlap
    max_chunks = max_chunks or settings.chunk_max_chunks

    if len(text) <= max_size:
        return [text]

    builder = _ChunkBuilder(max_size, overlap)
    sections = [s for s in SECTION_BOUNDARY.split(text) if s]

    if len(sections) > 1:
        for section in sections:
            if len(section) > max_size:
                for paragraph in section.split(PARAGRAPH_BOUNDARY):
                    builder.add(paragraph + PARAGRAPH_BOUNDARY)
            else:
                builder.add(section)
    else:
        for paragraph in text.split(PARAGRAPH_BOUNDARY):
            builder.add(paragraph + PARAGRAPH_BOUNDARY)

    builder.flush()
    chunks = builder.chunks

    if len(chunks) > max_chunks:
        logging.warning(f"Conversation has {len(chunks)} chunks, limiting to {max_chunks}")
        chunks = chunks[:max_chunks]

    logging.info(f"Split conversation of {len(text)} characters into {len(chunks)} chunks")
    return chunks


async def with_timeout(
    coro_factory: Callable[[], Awaitable[T]],
    timeout: Optional[float] = None,
    name: str = "operation",
    max_retries: Optional[int] = None,
    retry_delay: Optional[float] = None,
) -> T:
    """
    Await a fresh coroutine from coro_factory with a wall-clock timeout,
    retrying timeouts only
    """
    timeout = timeout or settings.chunk_timeout
    max_retries = settings.chunk_max_retries if max_retries is None else max_retries
    retry_delay = settings.chunk_retry_delay if retry_delay is None else retry_delay

    try:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max_retries + 1),
            wait=wait_fixed(retry_delay),
            retry=retry_if_exception_type(asyncio.TimeoutError),
        ):
            with attempt:
                number = attempt.retry_state.attempt_number
                if number > 1:
                    logging.warning(f"{name} timed out, retrying ({number - 1}/{max_retries})")
                return await asyncio.wait_for(coro_factory(), timeout=timeout)
    except RetryError as e:
        raise LLMTimeoutError(
            f"{name} timed out after {timeout}s ({max_retries} retries)"
        ) from e.last_attempt.exception()


def _match_criterion(evaluation: EvaluationData, name: str, index: int) -> Optional[CriterionScore]:
    key = name.strip().lower()
    for item in evaluation.criteria_scores:
        if item.criterion.strip().lower() == key:
            return item
    if index < len(evaluation.criteria_scores):
        return evaluation.criteria_scores[index]
    return None


def _combine_criteria(
    evaluations: List[EvaluationData],
    rubric: Optional[Rubric] = None,
) -> List[CriterionScore]:
    """One entry per rubric criterion, matched across chunks by name, then by position"""
    if rubric and rubric.criteria:
        template = [(c.name, c.weight) for c in rubric.criteria]
    else:
        template = [(c.criterion, c.weight) for c in evaluations[0].criteria_scores]

    total = len(evaluations)
    combined = []
    for index, (name, weight) in enumerate(template):
        scores: List[float] = []
        notes: List[str] = []
        for part, evaluation in enumerate(evaluations, 1):
            item = _match_criterion(evaluation, name, index)
            if item is None:
                continue
            scores.append(item.score)
            notes.append(f"[Part {part}/{total}]: {item.notes}")

        score = round_half_up(sum(scores) / len(scores)) if scores else MIN_SCORE
        combined.append(CriterionScore(
            criterion=name,
            weight=weight,
            score=score,
            weighted_score=score * weight,
            notes="\n".join(notes) or "No score returned for this criterion.",
        ))
    return combined


def combine_evaluations(
    evaluations: List[EvaluationData],
    rubric: Optional[Rubric] = None,
) -> EvaluationData:
    """Merge per-chunk evaluations into one"""
    if not evaluations:
        raise ValueError("No evaluations to combine")
    if len(evaluations) == 1:
        return evaluations[0]

    first = evaluations[0]
    average = round_half_up(sum(e.overall_score for e in evaluations) / len(evaluations))

    metadata = dict(first.metadata or {})
    metadata["chunkCount"] = len(evaluations)

    return first.model_copy(update={
        "overall_score": average,
        "performance_level": performance_level_for(average, rubric),
        "criteria_scores": _combine_criteria(evaluations, rubric),
        "metadata": metadata,
    })
