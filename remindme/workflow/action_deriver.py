from __future__ import annotations

import random
from dataclasses import dataclass, replace
from functools import reduce
from typing import Callable, Dict, Optional, Sequence, Tuple

from remindme.models import (
    Action,
    Introduction,
    InvalidPhrase,
    PhraseCapture,
    ReactionKind,
    ValidDate,
)

# Want to add some? Make sure they're cordial!
CANNED_LEAD_INS: Tuple[str, ...] = (
    "I didn't quite catch that. :frowning:",
    "Terribly sorry, but I didn't understand that. :flushed:",
    "Hmm, not sure what you meant there. :no_mouth:",
    "Hmm, something's not right there. :persevere:",
)

# Friendly non-commands. They also keep people who thank the bot from
# getting an "I didn't understand" reply.
_EASTER_EGGS: Dict[str, str] = {
    "i love you": "heart",
    "you rock!": "party",
    "you're awesome!": "party",
    "thanks": "party",
    "thanks!": "party",
}

LeadInSelector = Callable[[Sequence[str]], str]


@dataclass(frozen=True)
class _Tally:
    thumbs_up: bool = False
    thumbs_down: bool = False
    heart: bool = False
    party: bool = False
    intro: bool = False
    valid_count: int = 0
    truly_invalid: Tuple[str, ...] = ()


def _step(tally: _Tally, capture: PhraseCapture) -> _Tally:
    if isinstance(capture, ValidDate):
        return replace(tally, thumbs_up=True, valid_count=tally.valid_count + 1)
    if isinstance(capture, Introduction):
        return replace(tally, intro=True)
    if isinstance(capture, InvalidPhrase):
        phrase = capture.phrase.strip()
        effect = _EASTER_EGGS.get(phrase.lower())
        if effect == "heart":
            return replace(tally, heart=True)
        if effect == "party":
            return replace(tally, party=True)
        return replace(
            tally,
            thumbs_down=True,
            truly_invalid=tally.truly_invalid + (phrase,),
        )
    return tally


def _pluralize_reminders(count: int) -> str:
    return f"{count} reminder" if count == 1 else f"{count} reminders"


def build_invalid_reply(
    truly_invalid: Sequence[str],
    valid_count: int,
    choose_lead_in: LeadInSelector = random.choice,
) -> str:
    lines = [choose_lead_in(CANNED_LEAD_INS), ""]

    if len(truly_invalid) == 1:
        lines.append(f'I don\'t quite understand _"{truly_invalid[0]}"_. Care to try again?')
    else:
        lines.append("The following didn't make sense to me:")
        lines.extend(f"- {phrase}" for phrase in truly_invalid)

    if valid_count > 0:
        lines.append("")
        lines.append(
            f"However, I scheduled {_pluralize_reminders(valid_count)} for you! :dancer:"
        )

    return "\n".join(lines)


def build_intro_reply(author: Optional[str], handle: str) -> str:
    name = handle.strip().lstrip("@")
    bot = "@" + name
    greeting = f"Hey there, @{author}!" if author else "Hey there!"
    return (
        f"{greeting} I'm __{name}__, a robot that helps you remember to do things here on GitHub."
        "\n\nIf you need to remember something, mention me with a time and (optionally) a reminder."
        "\n\nSome examples of things I respond to:"
        f"\n- _{bot} in 4 hours to check up on this PR._"
        f"\n- _{bot} tomorrow to come back to this issue._"
        f"\n- _{bot} on July 3rd to do a release._"
        f"\n- _{bot} a year from today to update the copyright notice._"
        "\n\nIf all of the reminders in your comment are OK, I'll simply respond with a :+1: thumbs up."
        " Otherwise, I'll let you know what I didn't understand."
        "\n\nThen when the time comes, I'll ping and remind you to come back and have a look! :metal:"
    )


def derive(
    captures: Sequence[PhraseCapture],
    author: Optional[str] = None,
    handle: str = "RemindMe",
    choose_lead_in: LeadInSelector = random.choice,
) -> Action:
    """Classify one comment's captures into reactions and an optional reply."""
    tally = reduce(_step, captures, _Tally())

    confused = tally.thumbs_up and tally.thumbs_down
    thumbs_up = tally.thumbs_up and not confused
    thumbs_down = tally.thumbs_down and not confused
    party = tally.party

    reply: Optional[str] = None
    if tally.truly_invalid:
        reply = build_invalid_reply(tally.truly_invalid, tally.valid_count, choose_lead_in)
    elif tally.intro and tally.valid_count == 0:
        reply = build_intro_reply(author, handle)
        party = True

    flags = (
        (thumbs_up, ReactionKind.THUMBS_UP),
        (thumbs_down, ReactionKind.THUMBS_DOWN),
        (confused, ReactionKind.CONFUSED),
        (tally.heart, ReactionKind.HEART),
        (party, ReactionKind.HOORAY),
    )
    return Action(reactions=frozenset(kind for on, kind in flags if on), reply=reply)
