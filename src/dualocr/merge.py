# src/dualocr/merge.py
from __future__ import annotations

import logging
from typing import Optional, Protocol

from .exceptions import RemoteError, ServiceUnavailable
from .models import MergeOutcome, RefineStatus, SecondaryResult

logger = logging.getLogger("dualocr")


class TranscriptMerger(Protocol):
    async def merge(self, primary_text: str, secondary_text: str, language: str = ...) -> str:
        ...


async def reconcile(
    primary_text: str,
    secondary: Optional[SecondaryResult],
    merger: TranscriptMerger,
    language: str,
) -> MergeOutcome:
    """
    Reconcile the primary transcript with the secondary one.

      both present       -> merger.merge(); empty reply keeps the primary text
      secondary missing  -> keep primary, failed
      primary missing    -> adopt secondary, done
      both missing       -> empty, failed
    A failing merge call keeps the primary text and marks the refinement failed.
    """
    primary_text = primary_text or ""
    secondary_text = secondary.text if secondary and not secondary.failed else ""

    if not secondary_text:
        reason = secondary.error if secondary and secondary.failed else "no text from vision path"
        return MergeOutcome(
            current_text=primary_text,
            merged_text=None,
            status=RefineStatus.FAILED,
            reason=reason,
        )

    if not primary_text:
        return MergeOutcome(current_text=secondary_text, merged_text=secondary_text, status=RefineStatus.DONE)

    try:
        merged = await merger.merge(primary_text, secondary_text, language)
    except (RemoteError, ServiceUnavailable) as e:
        logger.warning("Merge call failed, keeping OCR text: %s", e)
        return MergeOutcome(
            current_text=primary_text,
            merged_text=None,
            status=RefineStatus.FAILED,
            reason=str(e),
        )

    merged = (merged or "").strip() or primary_text
    return MergeOutcome(current_text=merged, merged_text=merged, status=RefineStatus.DONE)
