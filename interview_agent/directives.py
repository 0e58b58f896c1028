"""Voice-response directives and their TwiML rendering.

The orchestrator only ever produces these primitives; turning them into the
provider's XML happens in ``render_twiml``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Union

from twilio.twiml.voice_response import VoiceResponse

BEEP_DIGITS = "9"


@dataclass(frozen=True)
class Speak:
    text: str


@dataclass(frozen=True)
class Tone:
    digits: str = BEEP_DIGITS


@dataclass(frozen=True)
class Record:
    action: str
    max_length: int = 60
    finish_on_key: str = "#"
    timeout: int = 5


@dataclass(frozen=True)
class Hangup:
    pass


Directive = Union[Speak, Tone, Record, Hangup]


def render_twiml(directives: Iterable[Directive], voice: str = "Polly.Matthew") -> str:
    vr = VoiceResponse()
    for d in directives:
        if isinstance(d, Speak):
            vr.say((d.text or "").strip()[:3000], voice=voice, language="en-US")
        elif isinstance(d, Tone):
            vr.play(digits=d.digits)
        elif isinstance(d, Record):
            vr.record(
                action=d.action,
                method="POST",
                max_length=d.max_length,
                finish_on_key=d.finish_on_key,
                play_beep=True,
                timeout=d.timeout,
            )
        elif isinstance(d, Hangup):
            vr.hangup()
        else:
            raise TypeError(f"Unknown directive: {d!r}")
    return str(vr)
