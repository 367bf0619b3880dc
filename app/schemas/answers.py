"""Structured answer schemas that provider replies are validated against."""

from typing import List, Optional, Union

from pydantic import BaseModel, StrictInt, StrictStr, confloat


class Citation(BaseModel):
    """A source cited by an open-ended answer."""

    url: StrictStr
    title: Optional[StrictStr] = None
    snippet: Optional[StrictStr] = None


class OpenEndedAnswer(BaseModel):
    """Reply to an OPEN_ENDED question."""

    answer_text: StrictStr
    citations: List[Citation]
    notes: Optional[StrictStr] = None


class RankedAnswer(BaseModel):
    """Reply to a RANKED question. The score is clamped by the caller."""

    score: Union[StrictInt, confloat(strict=True, allow_inf_nan=False)]
    reasoning: Optional[StrictStr] = None
