"""Parser for Stable Diffusion WebUI style ``parameters`` text.

Layout of the text::

    <positive prompt>
    Negative prompt: <negative prompt>
    Steps: 20, Sampler: Euler a, CFG scale: 7, Seed: 1, Size: 512x512, ...
"""
import logging
import re
from typing import List, Optional

from core.errors import ParseError
from core.models import GenerationParameters, SdTag
from formats import png

logger = logging.getLogger(__name__)

PARAMETERS_KEYWORD = "parameters"

NEGATIVE_PROMPT_MARKER = "\nNegative prompt:"
STEPS_MARKER = "\nSteps:"

_TAG_RE = re.compile(r"\(([^:]+):([0-9]+(?:\.[0-9]+)?)\)")
_FIELD_RE = re.compile(
    r"(Steps|Sampler|Schedule type|CFG scale|Seed|Size|Model|Denoising strength|Clip skip):\s*([^,]+)")

_FIELD_ATTRS = {
    "Steps": "steps",
    "Sampler": "sampler",
    "Schedule type": "schedule_type",
    "CFG scale": "cfg_scale",
    "Seed": "seed",
    "Size": "size",
    "Model": "model",
    "Denoising strength": "denoising_strength",
    "Clip skip": "clip_skip",
}


def parse_tags(prompt: str) -> List[SdTag]:
    """Split a prompt on commas into tags; ``(name:1.2)`` carries a weight."""
    tags = []
    for piece in prompt.split(","):
        raw_tag = piece.strip()
        if not raw_tag:
            continue
        m = _TAG_RE.search(raw_tag)
        if m is None:
            tags.append(SdTag(name=raw_tag))
            continue
        name = m.group(1).strip()
        if not name:
            continue
        tags.append(SdTag(name=name, weight=float(m.group(2))))
    return tags


def parse_generation_parameters(text: str) -> GenerationParameters:
    """Parse the full parameters text.

    Raises ParseError when the text is blank or lacks the
    ``Negative prompt:`` / ``Steps:`` sections.
    """
    if not text or not text.strip():
        raise ParseError("Empty parameter string")

    positive, sep, rest = text.partition(NEGATIVE_PROMPT_MARKER)
    if not sep:
        raise ParseError('"Negative prompt:" section not found')

    negative, sep, settings = rest.partition(STEPS_MARKER)
    if not sep:
        raise ParseError('"Steps:" section not found')

    params = GenerationParameters(
        positive_tags=parse_tags(positive),
        negative_tags=parse_tags(negative),
        raw_text=text,
    )
    for m in _FIELD_RE.finditer("Steps:" + settings):
        value = m.group(2).strip()
        if value:
            setattr(params, _FIELD_ATTRS[m.group(1)], value)
    return params


def extract_generation_parameters(layout: png.PngLayout) -> Optional[GenerationParameters]:
    """First ``parameters`` text chunk that parses, or None."""
    for _chunk, keyword, text in png.iter_text(layout):
        if keyword != PARAMETERS_KEYWORD:
            continue
        try:
            return parse_generation_parameters(text)
        except ParseError as e:
            logger.debug(f"Ignoring unparseable parameters chunk: {e}")
    return None
