"""Structured outputs for the batch LLM stages.

Both models are validated by pydantic-ai before the pipeline sees them.
A length mismatch with the input batch is tolerated by the callers.
"""

from pydantic import BaseModel, Field


class RelevanceVerdicts(BaseModel):
    """One boolean per input item, in input order."""

    relevant: list[bool] = Field(
        description="One entry per item, in order: true only if the item clearly serves its goal"
    )


class BatchSummaries(BaseModel):
    """One factual sentence per input item, in input order."""

    summaries: list[str] = Field(
        description="One short factual sentence per item, in the same order as the input"
    )
