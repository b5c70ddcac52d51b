"""
Block codec: text block <-> typed card record.

A block is an anchor line followed by ``KEY<delim>value<delim>`` field lines.
``parse`` never raises; ``diagnose`` returns the same result together with
the reasons a block was rejected, which the reconciler stores in quarantine.
"""

import json
import logging
import re
from dataclasses import dataclass, field

from pydantic import TypeAdapter, ValidationError

from sprout.application.groups import normalise_groups
from sprout.application.utils.delimiter import (
    HEAD_KEYS,
    STEP_KEY_RE,
    FieldSyntax,
    match_anchor,
    syntax_for,
)
from sprout.domain.constants import (
    ANCHOR_PREFIX,
    DEFAULT_DELIMITER,
    MAX_OQ_STEPS,
    MIN_OQ_STEPS,
)
from sprout.domain.errors import ParseFailure
from sprout.domain.models import (
    CLOZE_TOKEN_RE,
    BasicCard,
    Card,
    ClozeCard,
    McqCard,
    OcclusionCard,
    OcclusionRect,
    OrderedCard,
    ReversedCard,
)

logger = logging.getLogger(__name__)

_RECTS_ADAPTER = TypeAdapter(list[OcclusionRect])

WIKI_EMBED_RE = re.compile(r"!\[\[([^\]|#]+)(?:[#|][^\]]*)?\]\]")
MD_EMBED_RE = re.compile(r"!\[[^\]]*\]\(([^)\s]+)(?:\s+\"[^\"]*\")?\)")

_COMMON_KEYS = {"T", "I", "G"}
ALLOWED_KEYS: dict[str, set[str]] = {
    "basic": _COMMON_KEYS | {"Q", "A"},
    "reversed": _COMMON_KEYS | {"RQ", "A"},
    "cloze": _COMMON_KEYS | {"CQ"},
    "mcq": _COMMON_KEYS | {"MCQ", "A", "O"},
    "oq": _COMMON_KEYS | {"OQ"} | {str(i) for i in range(1, MAX_OQ_STEPS + 1)},
    "io": _COMMON_KEYS | {"IO", "Q", "O", "C"},
}
REQUIRED_KEYS: dict[str, set[str]] = {
    "basic": {"Q", "A"},
    "reversed": {"RQ", "A"},
    "cloze": {"CQ"},
    "mcq": {"MCQ", "A", "O"},
    "oq": {"OQ"},
    "io": {"IO"},
}
REPEATABLE_KEYS: dict[str, set[str]] = {"mcq": {"A", "O"}}


@dataclass
class RawField:
    key: str
    lines: list[str]
    line_no: int


@dataclass
class ParseOutcome:
    card: Card | None
    errors: list[ParseFailure] = field(default_factory=list)
    card_id: str | None = None

    @property
    def ok(self) -> bool:
        return self.card is not None

    @property
    def reason(self) -> str:
        return "; ".join(str(e) for e in self.errors)


class BlockCodec:
    def __init__(self, delimiter: str = DEFAULT_DELIMITER):
        self.syntax: FieldSyntax = syntax_for(delimiter)

    @property
    def delimiter(self) -> str:
        return self.syntax.delimiter

    # ---------- Reading ----------

    def parse(self, raw_text: str, note_path: str = "") -> Card | None:
        """Parse one block; None when it is not a valid card."""
        return self.diagnose(raw_text, note_path).card

    def diagnose(self, raw_text: str, note_path: str = "") -> ParseOutcome:
        try:
            return self._parse(raw_text, note_path)
        except Exception as e:  # parse must never raise
            logger.debug(f"Unexpected parse error in {note_path}: {e}", exc_info=True)
            return ParseOutcome(None, [ParseFailure(f"Internal parse error: {e}")])

    def read_fields(self, lines: list[str]) -> tuple[list[str], list[RawField], list[ParseFailure]]:
        """Split block lines into anchors and raw fields."""
        anchors: list[str] = []
        fields: list[RawField] = []
        errors: list[ParseFailure] = []
        open_field: RawField | None = None

        for idx, line in enumerate(lines):
            if open_field is not None:
                if not self.syntax.is_structural(line):
                    text, closed = self.syntax.strip_closing(line)
                    open_field.lines.append(text)
                    if closed:
                        open_field = None
                    continue
                open_field = None

            anchor = match_anchor(line)
            if anchor is not None:
                anchors.append(anchor)
                continue
            if not line.strip():
                continue

            matched = self.syntax.match_any_field(line)
            if matched is None:
                errors.append(ParseFailure(f"Unrecognised line: {line.strip()[:60]}", idx + 1))
                continue
            key, rest = matched
            text, closed = self.syntax.strip_closing(rest)
            raw = RawField(key, [text], idx + 1)
            fields.append(raw)
            if not closed:
                open_field = raw

        return anchors, fields, errors

    def _parse(self, raw_text: str, note_path: str) -> ParseOutcome:
        lines = raw_text.replace("\r\n", "\n").split("\n")
        anchors, fields, errors = self.read_fields(lines)

        card_id = anchors[0] if anchors else None
        if not anchors:
            errors.append(ParseFailure(f"Missing {ANCHOR_PREFIX}<id> anchor"))
        elif len(set(anchors)) > 1:
            errors.append(ParseFailure(f"Conflicting anchors in one block: {', '.join(anchors)}"))

        heads = [f.key for f in fields if f.key in HEAD_KEYS]
        if "IO" in heads:
            heads = [h for h in heads if h != "Q"]
        if len(heads) != 1:
            what = "No card type line (Q, RQ, CQ, MCQ, OQ, IO)" if not heads else (
                f"Several card type lines: {', '.join(heads)}"
            )
            errors.append(ParseFailure(what))
            return ParseOutcome(None, errors, card_id)

        card_type = HEAD_KEYS[heads[0]]
        values: dict[str, list[str]] = {}
        seen: set[str] = set()
        for f in fields:
            if f.key not in ALLOWED_KEYS[card_type]:
                errors.append(ParseFailure(f"Field {f.key} is not allowed on {card_type} cards", f.line_no))
                continue
            if f.key in seen and f.key not in REPEATABLE_KEYS.get(card_type, set()):
                errors.append(ParseFailure(f"Duplicate field {f.key}", f.line_no))
                continue
            seen.add(f.key)
            values.setdefault(f.key, []).append(self.syntax.decode_value(f.lines))

        for key in sorted(REQUIRED_KEYS[card_type]):
            if not any(v for v in values.get(key, [])):
                errors.append(ParseFailure(f"Missing {key}{self.delimiter} field"))

        if errors or card_id is None:
            return ParseOutcome(None, errors, card_id)

        common = {
            "id": card_id,
            "source_note_path": note_path,
            "title": _first(values, "T"),
            "info": _first(values, "I"),
            "groups": normalise_groups(values.get("G", [])),
        }
        builder = getattr(self, f"_build_{card_type}")
        card = builder(common, values, fields, errors)
        if errors:
            return ParseOutcome(None, errors, card_id)
        return ParseOutcome(card, [], card_id)

    # ---------- Per-type builders ----------

    def _build_basic(self, common, values, fields, errors) -> Card:
        return BasicCard(question=values["Q"][0], answer=values["A"][0], **common)

    def _build_reversed(self, common, values, fields, errors) -> Card:
        return ReversedCard(question=values["RQ"][0], answer=values["A"][0], **common)

    def _build_cloze(self, common, values, fields, errors) -> Card | None:
        text = values["CQ"][0]
        tokens = list(CLOZE_TOKEN_RE.finditer(text))
        if not tokens:
            errors.append(ParseFailure("Cloze card requires at least one {{cN::...}} token"))
        for m in tokens:
            if int(m.group(1)) <= 0:
                errors.append(ParseFailure(f"Cloze token has invalid number: c{m.group(1)}"))
            if not m.group(2).strip():
                errors.append(ParseFailure(f"Cloze token c{m.group(1)} is empty"))
        if errors:
            return None
        return ClozeCard(text=text, **common)

    def _build_mcq(self, common, values, fields, errors) -> Card | None:
        options: list[str] = []
        correct: list[int] = []
        for f in fields:
            if f.key not in ("A", "O"):
                continue
            value = self.syntax.decode_value(f.lines)
            if f.key == "A":
                if "\n" in value:
                    errors.append(ParseFailure("MCQ correct option must be a single line", f.line_no))
                correct.append(len(options))
                options.append(value)
            else:
                options.extend(line.strip() for line in value.split("\n") if line.strip())
        if len(correct) != 1:
            errors.append(ParseFailure(f"MCQ needs exactly one A{self.delimiter} option, found {len(correct)}"))
        if len(options) < 2:
            errors.append(ParseFailure(f"MCQ needs at least one O{self.delimiter} option"))
        if errors:
            return None
        return McqCard(stem=values["MCQ"][0], options=options, correct_index=correct[0], **common)

    def _build_oq(self, common, values, fields, errors) -> Card | None:
        numbers = sorted(int(k) for k in values if STEP_KEY_RE.match(k))
        if numbers != list(range(1, len(numbers) + 1)):
            errors.append(ParseFailure(f"Ordering steps must be numbered 1..N without gaps, got {numbers}"))
        if not MIN_OQ_STEPS <= len(numbers) <= MAX_OQ_STEPS:
            errors.append(
                ParseFailure(f"Ordering question needs {MIN_OQ_STEPS}-{MAX_OQ_STEPS} steps, got {len(numbers)}")
            )
        steps = [values[str(n)][0] for n in numbers]
        if any(not s for s in steps):
            errors.append(ParseFailure("Ordering steps cannot be empty"))
        if errors:
            return None
        return OrderedCard(question=values["OQ"][0], steps=steps, **common)

    def _build_io(self, common, values, fields, errors) -> Card | None:
        image_ref = extract_image_ref(values["IO"][0])
        if image_ref is None:
            errors.append(ParseFailure("IO card requires an embedded image (![[file]])"))

        rects: list[OcclusionRect] = []
        if values.get("O"):
            try:
                rects = _RECTS_ADAPTER.validate_python(json.loads(values["O"][0]))
            except (json.JSONDecodeError, ValidationError) as e:
                errors.append(ParseFailure(f"Invalid occlusion JSON: {str(e).splitlines()[0]}"))

        mask_mode = None
        if values.get("C"):
            mask_mode = values["C"][0].strip().lower()
            if mask_mode not in ("solo", "all"):
                errors.append(ParseFailure(f"Mask mode must be solo or all, got {mask_mode!r}"))
        if errors:
            return None
        return OcclusionCard(
            image_ref=image_ref,
            prompt=_first(values, "Q"),
            rects=rects,
            mask_mode=mask_mode,
            **common,
        )

    # ---------- Writing ----------

    def serialize(self, card: Card) -> list[str]:
        """Canonical block lines for a parent card, anchor first."""
        lines = [f"{ANCHOR_PREFIX}{card.id}"]
        if card.title:
            lines += self._field("T", card.title)

        if card.type == "basic":
            lines += self._field("Q", card.question) + self._field("A", card.answer)
        elif card.type == "reversed":
            lines += self._field("RQ", card.question) + self._field("A", card.answer)
        elif card.type == "cloze":
            lines += self._field("CQ", card.text)
        elif card.type == "mcq":
            lines += self._field("MCQ", card.stem)
            for i, option in enumerate(card.options):
                lines += self._field("A" if i == card.correct_index else "O", option)
        elif card.type == "oq":
            lines += self._field("OQ", card.question)
            for i, step in enumerate(card.steps, start=1):
                lines += self._field(str(i), step)
        elif card.type == "io":
            lines += self._field("IO", f"![[{card.image_ref}]]")
            if card.prompt:
                lines += self._field("Q", card.prompt)
            if card.rects:
                payload = [r.model_dump(by_alias=True) for r in card.rects]
                lines += self._field("O", json.dumps(payload, separators=(",", ":")))
            if card.mask_mode:
                lines += self._field("C", card.mask_mode)
        else:
            raise ValueError(f"{card.type} cards are derived and have no block of their own")

        if card.info:
            lines += self._field("I", card.info)
        if card.groups:
            lines += self._field("G", ", ".join(card.groups))
        return lines

    def _field(self, key: str, value: str) -> list[str]:
        encoded = self.syntax.encode_value(value)
        encoded[0] = f"{key}{self.delimiter}{encoded[0]}"
        encoded[-1] = f"{encoded[-1]}{self.delimiter}"
        return encoded


def extract_image_ref(value: str) -> str | None:
    m = WIKI_EMBED_RE.search(value) or MD_EMBED_RE.search(value)
    return m.group(1).strip() if m else None


def _first(values: dict[str, list[str]], key: str) -> str | None:
    found = values.get(key)
    return found[0] if found and found[0] else None
