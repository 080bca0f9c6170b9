"""Fixed pipeline stages, declared in execution order."""

from __future__ import annotations

from enum import Enum
from typing import List, Union


class PipelineStage(str, Enum):
    PRE_PROCESS = "pre_process"
    DIFF_DETECTION = "diff_detection"
    PREPARATION = "preparation"
    CHUNKING = "chunking"
    TRANSLATION = "translation"
    CONSENSUS = "consensus"
    VALIDATION = "validation"
    POST_PROCESS = "post_process"
    OUTPUT = "output"

    @classmethod
    def ordered(cls) -> List["PipelineStage"]:
        return list(cls)

    @classmethod
    def coerce(cls, value: Union["PipelineStage", str]) -> "PipelineStage":
        if isinstance(value, cls):
            return value
        raw = str(value or "").strip().lower()
        try:
            return cls(raw)
        except ValueError:
            raise ValueError(f"Unknown pipeline stage: {value!r}") from None

    @classmethod
    def essentials(cls) -> List["PipelineStage"]:
        return [cls.TRANSLATION, cls.VALIDATION, cls.OUTPUT]

    @classmethod
    def is_essential(cls, value: Union["PipelineStage", str]) -> bool:
        return cls.coerce(value) in cls.essentials()

    @property
    def index(self) -> int:
        return _STAGE_ORDER.index(self)

    def __str__(self) -> str:
        return self.value


_STAGE_ORDER: List[PipelineStage] = list(PipelineStage)
