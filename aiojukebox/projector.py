"""
Projection of the canonical queue into the list a view displays.

The projection runs three steps:

1. select the entries with the view's target status (queued for the main view,
   vetoed for the vetoed view);
2. for any sort window other than all-time, replace the candidates with the
   server-provided ranking for that window, since window-scoped aggregates cannot be
   recomputed from the local queue;
3. filter by the view's search terms.

The projector never re-sorts: display order is the order of the selected candidates.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import replace

from aiojukebox.models.core import QueueEntry, ViewState
from aiojukebox.models.types import MediaStatus, SortWindow

from .reconcile import CanonicalQueue
from .util import SearchTerms, matches_any_text, split_search_terms, tag_match_keys

logger = logging.getLogger(__name__)


def matches_search(entry: QueueEntry, terms: SearchTerms) -> bool:
    """
    Return True if the entry matches the search terms.

    An entry matches if at least one free-text term matches its title, an artist or
    its category, and at least one tag term matches one of its tags. Either
    condition holds trivially when there are no terms of that kind.
    """
    media = entry.media
    if terms.text and not matches_any_text(
        terms.text, (media.title, *media.artists, media.category)
    ):
        return False
    if terms.tags:
        keys: set[str] = set()
        for tag in media.tags:
            keys.update(tag_match_keys(tag))
        if not any(term in keys for term in terms.tags):
            return False
    return True


def _ranked_candidates(
    canonical: CanonicalQueue, ranking: Sequence[QueueEntry], target: MediaStatus
) -> list[QueueEntry]:
    statuses = {entry.media_id: entry.status for entry in canonical.entries}
    candidates = []
    for entry in ranking:
        status = statuses.get(entry.media_id)
        if status is not target:
            continue
        # Keep the window-scoped aggregates, take the status from the canonical queue
        candidates.append(entry if entry.status is status else replace(entry, status=status))
    return candidates


def project(
    canonical: CanonicalQueue,
    view_state: ViewState,
    *,
    target: MediaStatus = MediaStatus.QUEUED,
    ranking: Sequence[QueueEntry] | None = None,
) -> tuple[QueueEntry, ...]:
    """
    Derive the displayed sequence of entries.

    Args:
        canonical: The canonical queue.
        view_state: The view's sort window and search terms.
        target: The status the view displays.
        ranking: The server-provided ranking for view_state.sort_window. Ignored for
            the all-time window. While it is not loaded a windowed view is empty.
    """
    if view_state.sort_window is SortWindow.ALL_TIME:
        candidates: Sequence[QueueEntry] = canonical.with_status(target)
    elif ranking is None:
        logger.debug("No %s ranking loaded yet", view_state.sort_window.value)
        return ()
    else:
        candidates = _ranked_candidates(canonical, ranking, target)

    if not view_state.search_terms:
        return tuple(candidates)
    terms = split_search_terms(view_state.search_terms)
    return tuple(entry for entry in candidates if matches_search(entry, terms))
