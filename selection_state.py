"""
wordwheel - Selection State Machine
Turns the two dial angles into word-variant and word-position transitions.

Left dial: cycles the word under the cursor through its variants.
Right dial: moves the cursor, and extends the sentence with a predicted
word when the cursor runs past the last word.

All methods here are synchronous state transitions. Provider calls are
returned to the caller as VariantRequest objects; the caller performs
the fetch and reports back with apply_variants / fetch_failed /
complete_extension / fail_extension.
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from config import MASK_TOKEN, PREDICT_WORD
from logging_utils import log_event


@dataclass(frozen=True)
class VariantRequest:
    """One provider call issued by the state machine"""
    word: str
    context: str
    position: int
    origin_cursor: int
    epoch: int
    is_extension: bool = False


@dataclass
class VariantSet:
    """Variants for the word at source_cursor; variants[0] is the original word"""
    source_cursor: int
    variants: List[str]


@dataclass(frozen=True)
class SelectionSnapshot:
    words: Tuple[str, ...]
    cursor: int
    variants: Tuple[str, ...]
    variants_fetched: bool
    is_extending: bool
    window_start: int
    window: Tuple[str, ...]


class SelectionStateMachine:
    def __init__(self, words: Sequence[str], step_degrees: float = 60.0, window_width: int = 6):
        if not words:
            raise ValueError("sentence must contain at least one word")
        self.words: List[str] = list(words)
        self.step_degrees = step_degrees
        self.window_width = window_width

        self.cursor = 0
        self.variant_set = VariantSet(0, [self.words[0]])
        self.last_fetched_cursor: Optional[int] = None
        self.last_consumed_angle = 0.0
        self.is_extending = False

        # Bumped on every cursor change; a request is current only while its epoch matches
        self._epoch = 0
        self._pending_fetch: Optional[int] = None

    # --- Cursor ------------------------------------------------------------

    def _set_cursor(self, new_cursor: int) -> None:
        if new_cursor == self.cursor:
            return
        self.cursor = new_cursor
        self._epoch += 1
        placeholder = [self.words[new_cursor]] if new_cursor < len(self.words) else []
        self.variant_set = VariantSet(new_cursor, placeholder)
        self.last_fetched_cursor = None
        self._pending_fetch = None

    def is_current(self, request: VariantRequest) -> bool:
        return request.epoch == self._epoch and request.origin_cursor == self.cursor

    # --- Left dial: word variants ------------------------------------------

    def on_left_angle(self, angle: float) -> Optional[VariantRequest]:
        """Left dial moved. Returns a fetch to issue, or None when the word was (maybe) swapped."""
        if self.is_extending or self.cursor >= len(self.words):
            return None

        if self.last_fetched_cursor != self.cursor:
            if self._pending_fetch == self._epoch:
                return None
            self._pending_fetch = self._epoch
            return VariantRequest(
                word=self.words[self.cursor],
                context=" ".join(self.words),
                position=self.cursor,
                origin_cursor=self.cursor,
                epoch=self._epoch,
            )

        variants = self.variant_set.variants
        if not variants:
            return None
        index = math.floor(abs(angle) / self.step_degrees) % len(variants)
        self._write_word(variants[index])
        return None

    def apply_variants(self, request: VariantRequest, variations: Sequence[str]) -> bool:
        """Store fetched variants. Returns False when the request went stale."""
        if not self.is_current(request):
            log_event("DEBUG", "Selection", "Discarded stale variants",
                      origin=request.origin_cursor, cursor=self.cursor)
            return False
        self._pending_fetch = None
        if variations:
            self.variant_set = VariantSet(self.cursor, [request.word, *variations])
        self.last_fetched_cursor = self.cursor
        return True

    def fetch_failed(self, request: VariantRequest) -> None:
        # Leave last_fetched_cursor unset so the next left-dial move retries
        if self.is_current(request):
            self._pending_fetch = None

    def _write_word(self, word: str) -> bool:
        if self.words[self.cursor] == word:
            return False
        self.words[self.cursor] = word
        return True

    # --- Right dial: navigation and extension ------------------------------

    def on_right_angle(self, angle: float) -> Optional[VariantRequest]:
        """Right dial moved. Returns an extension request when the cursor ran past the end."""
        if self.is_extending:
            return None

        angle_delta = angle - self.last_consumed_angle
        steps = math.floor(abs(angle_delta) / self.step_degrees)
        if steps > 0:
            direction = 1 if angle_delta > 0 else -1
            tentative = max(0, self.cursor + steps * direction)
            if tentative >= len(self.words):
                tentative = len(self.words)
            self.last_consumed_angle += steps * self.step_degrees * direction
            self._set_cursor(tentative)

        return self._maybe_extend()

    def rebase_navigation(self, shift: float) -> None:
        """Move the consumed-angle reference without navigating (used after a resync)."""
        self.last_consumed_angle += shift

    def _maybe_extend(self) -> Optional[VariantRequest]:
        if self.cursor != len(self.words) or self.is_extending:
            return None
        self.is_extending = True
        return VariantRequest(
            word=PREDICT_WORD,
            context=" ".join(self.words) + " " + MASK_TOKEN,
            position=len(self.words),
            origin_cursor=self.cursor,
            epoch=self._epoch,
            is_extension=True,
        )

    def complete_extension(self, request: VariantRequest, variations: Sequence[str]) -> bool:
        """Append the predicted word, or revert the cursor when nothing came back."""
        if not variations or not self.is_current(request):
            self.fail_extension(request)
            return False

        old_length = len(self.words)
        self.words.append(variations[0])
        self.variant_set = VariantSet(old_length, list(variations))
        self.last_fetched_cursor = old_length
        self.is_extending = False
        log_event("INFO", "Selection", "Extended sentence", word=variations[0], length=len(self.words))
        return True

    def fail_extension(self, request: VariantRequest) -> None:
        self.is_extending = False
        if self.cursor >= len(self.words):
            self._set_cursor(len(self.words) - 1)
        log_event("WARN", "Selection", "Prediction failed, cursor reverted", cursor=self.cursor)

    # --- Display -----------------------------------------------------------

    def visible_window(self, width: Optional[int] = None) -> Tuple[int, List[str]]:
        """Start index and words of the window centered on the cursor"""
        width = self.window_width if width is None else width
        half = width // 2
        start = max(0, self.cursor - half)
        end = min(len(self.words), start + width)
        if end - start < width:
            start = max(0, end - width)
        return start, self.words[start:end]

    def snapshot(self) -> SelectionSnapshot:
        start, window = self.visible_window()
        return SelectionSnapshot(
            words=tuple(self.words),
            cursor=self.cursor,
            variants=tuple(self.variant_set.variants),
            variants_fetched=self.last_fetched_cursor == self.cursor,
            is_extending=self.is_extending,
            window_start=start,
            window=tuple(window),
        )
