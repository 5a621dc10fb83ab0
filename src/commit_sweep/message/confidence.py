"""
Additive confidence scoring for planned commit groups.

The score is a pure function of the group's files and the task identifier.
Every factor that contributed is recorded by code so the plan explains its
own rating.
"""

from __future__ import annotations

from typing import Dict, List, Sequence

from commit_sweep.grouping.group_model import (
    BUCKET_SOURCE,
    BUCKET_TEST,
    ROOT_SCOPE,
    Confidence,
    FileChange,
)


FACTOR_TASK_ID = "task_id"
FACTOR_SINGLE_FILE = "single_file"
FACTOR_FEW_FILES = "few_files"
FACTOR_SINGLE_BUCKET = "single_bucket"
FACTOR_UNIFORM_STATUS = "uniform_status"
FACTOR_MANY_FILES = "many_files"
FACTOR_MIXED_STATUS = "mixed_status"
FACTOR_UNTESTED_SOURCE = "untested_source"
FACTOR_WIDE_SCOPE = "wide_scope"
FACTOR_AMBIGUOUS_TYPE = "ambiguous_type"

FACTOR_WEIGHTS: Dict[str, int] = {
    FACTOR_TASK_ID: 2,
    FACTOR_SINGLE_FILE: 1,
    FACTOR_FEW_FILES: 1,
    FACTOR_SINGLE_BUCKET: 1,
    FACTOR_UNIFORM_STATUS: 1,
    FACTOR_MANY_FILES: -1,
    FACTOR_MIXED_STATUS: -1,
    FACTOR_UNTESTED_SOURCE: -1,
    FACTOR_WIDE_SCOPE: -1,
    FACTOR_AMBIGUOUS_TYPE: -1,
}

LEVEL_HIGH = "high"
LEVEL_MEDIUM = "medium"
LEVEL_LOW = "low"

MANY_FILES_THRESHOLD = 5
WIDE_SCOPE_THRESHOLD = 2


def confidence_level(score: int) -> str:
    if score >= 3:
        return LEVEL_HIGH
    if score >= 1:
        return LEVEL_MEDIUM
    return LEVEL_LOW


def _score(factors: Sequence[str]) -> Confidence:
    score = sum(FACTOR_WEIGHTS[factor] for factor in factors)
    return Confidence(score=score, level=confidence_level(score), factors=list(factors))


def assess_confidence(files: Sequence[FileChange], task_id: str = "") -> Confidence:
    """Score a group of files.

    Parameters
    ----------
    files : Sequence[FileChange]
        The group's files, including any attached by the affinity rule.
    task_id : str
        Resolved task identifier; an empty string means none.

    Returns
    -------
    Confidence
        Score, level and the ordered list of contributing factor codes.
    """
    factors: List[str] = []
    count = len(files)
    if task_id:
        factors.append(FACTOR_TASK_ID)
    if count == 1:
        factors.append(FACTOR_SINGLE_FILE)
    elif 2 <= count <= 3:
        factors.append(FACTOR_FEW_FILES)
    elif count > MANY_FILES_THRESHOLD:
        factors.append(FACTOR_MANY_FILES)

    if len({change.bucket for change in files}) == 1:
        factors.append(FACTOR_SINGLE_BUCKET)

    if len({change.status for change in files}) == 1:
        factors.append(FACTOR_UNIFORM_STATUS)
    else:
        factors.append(FACTOR_MIXED_STATUS)

    buckets = {change.bucket for change in files}
    if BUCKET_SOURCE in buckets and BUCKET_TEST not in buckets:
        factors.append(FACTOR_UNTESTED_SOURCE)

    top_dirs = {change.top_level_dir for change in files} - {ROOT_SCOPE}
    if len(top_dirs) > WIDE_SCOPE_THRESHOLD:
        factors.append(FACTOR_WIDE_SCOPE)

    return _score(factors)


def penalize(confidence: Confidence, factor: str) -> Confidence:
    """Return a new :class:`Confidence` with ``factor`` added."""
    if factor in confidence.factors:
        return confidence
    return _score(list(confidence.factors) + [factor])
