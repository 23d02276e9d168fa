"""Prompt workflows that turn a primitive action into fully-specified events."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from .errors import DisambiguationAbandoned, InvalidEventError
from .events import Actor, EventType, new_event_id

logger = logging.getLogger(__name__)


class Step(str, Enum):
    AWAITING_PAINT_CONFIRMATION = "awaiting_paint_confirmation"
    AWAITING_ASSIST = "awaiting_assist"
    AWAITING_REBOUNDER = "awaiting_rebounder"
    AWAITING_STEAL_VICTIM = "awaiting_steal_victim"
    AWAITING_STEAL_CREDIT = "awaiting_steal_credit"
    AWAITING_FOUL_TYPE = "awaiting_foul_type"
    AWAITING_BLOCKED_PLAYER = "awaiting_blocked_player"
    RESOLVED = "resolved"


# Answered before the primary event is appended: they only add metadata
METADATA_STEPS = frozenset({
    Step.AWAITING_PAINT_CONFIRMATION,
    Step.AWAITING_FOUL_TYPE,
    Step.AWAITING_BLOCKED_PLAYER,
})


@dataclass
class EventDraft:
    """An event that has not been appended yet."""

    event_type: EventType
    actor: Optional[Actor] = None
    value: Optional[int] = None
    metadata: dict = field(default_factory=dict)
    event_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.event_id,
            "eventType": self.event_type.value,
            "actor": self.actor.to_dict() if self.actor else None,
            "value": self.value,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EventDraft":
        return cls(
            event_type=EventType(data["eventType"]),
            actor=Actor.from_dict(data.get("actor")),
            value=data.get("value"),
            metadata=dict(data.get("metadata") or {}),
            event_id=data.get("id"),
        )


def plan_steps(draft: EventDraft) -> list[Step]:
    """Prompts needed to resolve a primitive action, in order."""
    etype = draft.event_type
    meta = draft.metadata
    if etype == EventType.FG_MADE:
        steps = [] if "pip" in meta else [Step.AWAITING_PAINT_CONFIRMATION]
        return steps + [Step.AWAITING_ASSIST]
    if etype == EventType.THREE_MADE:
        return [Step.AWAITING_ASSIST]
    if etype in (EventType.FG_MISSED, EventType.THREE_MISSED, EventType.FT_MISSED):
        return [Step.AWAITING_REBOUNDER]
    if etype == EventType.STEAL:
        return [Step.AWAITING_STEAL_VICTIM]
    if etype == EventType.TURNOVER:
        return [Step.AWAITING_STEAL_CREDIT]
    if etype == EventType.FOUL and "isOffensive" not in meta:
        return [Step.AWAITING_FOUL_TYPE]
    if etype == EventType.BLOCK and "blockedActor" not in meta:
        return [Step.AWAITING_BLOCKED_PLAYER]
    return []


def _parse_foul_type(answer) -> bool:
    if isinstance(answer, bool):
        return answer
    if isinstance(answer, str) and answer.lower() in ("offensive", "defensive"):
        return answer.lower() == "offensive"
    raise InvalidEventError(f"Foul type must be 'offensive' or 'defensive', got {answer!r}")


@dataclass
class PendingAction:
    draft: EventDraft
    steps: list[Step]
    recorded: bool = False
    linked_ids: list[str] = field(default_factory=list)

    @property
    def step(self) -> Step:
        return self.steps[0] if self.steps else Step.RESOLVED

    @property
    def event_id(self) -> str:
        return self.draft.event_id

    def prompt(self) -> dict:
        actor = self.draft.actor
        return {
            "step": self.step.value,
            "eventId": self.event_id,
            "eventType": self.draft.event_type.value,
            "actor": actor.to_dict() if actor else None,
            "recorded": self.recorded,
        }


class DisambiguationEngine:
    """
    Runs one pending workflow at a time.

    The primary event is committed as soon as no metadata prompt is left ahead
    of it; linked events (assist, rebound, steal/turnover counterpart) are
    committed afterwards with their own timestamps. Cancelling or abandoning a
    prompt still records the primary event, without the link.

    Args:
        commit: Appends a draft to the log and returns its id
        validate: Raises InvalidEventError for drafts that cannot be recorded
    """

    def __init__(
        self,
        commit: Callable[[EventDraft], str],
        validate: Callable[[EventDraft], None],
        id_factory: Callable[[], str] = new_event_id,
    ):
        self._commit = commit
        self._validate = validate
        self._id_factory = id_factory
        self.pending: Optional[PendingAction] = None
        self.gaps: list[DisambiguationAbandoned] = []

    def start(self, draft: EventDraft, prompt: bool = True) -> str:
        """
        Begin resolving a primitive action.

        Any workflow still pending is abandoned first.

        Returns:
            The id reserved for the primary event
        """
        self._validate(draft)
        if self.pending is not None:
            self.abandon()
        if not draft.event_id:
            draft.event_id = self._id_factory()
        action = PendingAction(draft=draft, steps=plan_steps(draft) if prompt else [])
        self.pending = action
        try:
            self._advance(action)
        except Exception:
            self.pending = None
            raise
        return draft.event_id

    def answer(self, answer=None) -> Optional[str]:
        """
        Answer the current prompt.

        ``None`` means "no X" for linked-event prompts (no assist, no rebound).

        Returns:
            Id of the linked event created by this answer, if any
        """
        action = self._require_pending()
        step = action.step
        primary = action.draft
        linked: Optional[EventDraft] = None

        if step == Step.AWAITING_PAINT_CONFIRMATION:
            primary.metadata["pip"] = bool(answer)
        elif step == Step.AWAITING_FOUL_TYPE:
            primary.metadata["isOffensive"] = _parse_foul_type(answer)
        elif step == Step.AWAITING_BLOCKED_PLAYER:
            if answer is not None:
                self._check_side(answer, primary.actor, same=False)
                primary.metadata["blockedActor"] = answer.to_dict()
        elif answer is not None:
            linked = self._linked_draft(step, primary, answer)
            self._validate(linked)

        action.steps.pop(0)
        self._advance(action)
        if linked is None:
            return None
        linked_id = self._commit(linked)
        action.linked_ids.append(linked_id)
        return linked_id

    def cancel(self) -> None:
        """Resolve the pending workflow to its "no linked event" terminal state."""
        action = self.pending
        if action is None:
            return
        action.steps.clear()
        self._advance(action)

    def abandon(self) -> None:
        """Drop an interrupted workflow, keeping the primary and logging the gap."""
        action = self.pending
        if action is None:
            return
        gap = DisambiguationAbandoned(action.event_id, action.step.value)
        self.gaps.append(gap)
        logger.info("Linked-event gap: %s", gap)
        self.cancel()

    def discard(self) -> None:
        """Forget the pending workflow without recording anything more (used by undo)."""
        self.pending = None

    @property
    def unrecorded_draft(self) -> Optional[EventDraft]:
        """Primary event still waiting on a metadata prompt, not yet in the log."""
        if self.pending is None or self.pending.recorded:
            return None
        return self.pending.draft

    def _require_pending(self) -> PendingAction:
        if self.pending is None:
            raise InvalidEventError("No prompt is waiting for an answer")
        return self.pending

    def _advance(self, action: PendingAction) -> None:
        if not action.recorded and (not action.steps or action.step not in METADATA_STEPS):
            self._commit(action.draft)
            action.recorded = True
        if not action.steps:
            self.pending = None

    @staticmethod
    def _check_side(answer, primary_actor: Actor, same: bool) -> None:
        if not isinstance(answer, Actor):
            raise InvalidEventError(f"Expected an Actor, got {answer!r}")
        if (answer.side == primary_actor.side) != same:
            relation = "a teammate" if same else "an opponent"
            raise InvalidEventError(f"{answer.to_dict()} must be {relation} of the primary actor")

    def _linked_draft(self, step: Step, primary: EventDraft, answer) -> EventDraft:
        link = {"linkedEventId": primary.event_id}
        if step == Step.AWAITING_ASSIST:
            self._check_side(answer, primary.actor, same=True)
            if answer == primary.actor:
                raise InvalidEventError("A player cannot assist their own basket")
            return EventDraft(
                EventType.ASSIST,
                answer,
                metadata={**link, "assist": primary.event_id, "scorer": primary.actor.key},
            )
        if step == Step.AWAITING_REBOUNDER:
            if not isinstance(answer, Actor):
                raise InvalidEventError(f"Expected an Actor, got {answer!r}")
            kind = "offensive" if answer.side == primary.actor.side else "defensive"
            return EventDraft(EventType.REBOUND, answer, metadata={**link, "reboundType": kind})
        if step == Step.AWAITING_STEAL_VICTIM:
            self._check_side(answer, primary.actor, same=False)
            return EventDraft(EventType.TURNOVER, answer, metadata=link)
        if step == Step.AWAITING_STEAL_CREDIT:
            self._check_side(answer, primary.actor, same=False)
            return EventDraft(EventType.STEAL, answer, metadata=link)
        raise InvalidEventError(f"No answer expected in state {step.value}")
