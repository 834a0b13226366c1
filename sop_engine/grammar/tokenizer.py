"""
Inline tag grammar for rule descriptions.

    tag      := '@' NAME ( '(' PARAM ')' )?
    NAME     := [A-Z_][A-Z0-9_&]*
    tagGroup := tag ( '|' tag )* ( '→' tag )?

Inside a parameter a NAME may also start with a digit, so code and
modifier references such as @99214 or @25 are recognised there.

The scanner walks the text once, left to right, and always takes the
longest group starting at an '@': a parameterised tag is consumed
together with its balanced parentheses, a pipe group stays one token,
and everything else is returned as opaque text runs.
"""
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple, Union

REMAP_ARROW = "→"

_NAME_START = frozenset("ABCDEFGHIJKLMNOPQRSTUVWXYZ_")
_NAME_CHARS = _NAME_START | frozenset("0123456789&")
_DIGITS = frozenset("0123456789")


# ============================================================
# TOKENS
# ============================================================

@dataclass
class TextRun:
    text: str
    start: int
    end: int


@dataclass
class Tag:
    name: str
    param: Optional[str] = None
    start: int = 0
    end: int = 0
    nested: List["Tag"] = field(default_factory=list)

    @property
    def bare(self) -> str:
        """Tag without its parameter, e.g. '@ADD' for '@ADD(@25)'."""
        return f"@{self.name}"

    @property
    def raw(self) -> str:
        if self.param is None:
            return self.bare
        return f"{self.bare}({self.param})"


@dataclass
class TagGroup:
    """Pipe-joined tags ('any of'), optionally remapped with '→'."""
    tags: List[Tag]
    remap: Optional[Tag] = None
    start: int = 0
    end: int = 0

    @property
    def raw(self) -> str:
        text = "|".join(t.raw for t in self.tags)
        if self.remap is not None:
            text += f"{REMAP_ARROW}{self.remap.raw}"
        return text


Token = Union[TextRun, Tag, TagGroup]


# ============================================================
# SCANNER
# ============================================================

class _Scanner:

    def __init__(self, text: str, offset: int = 0, in_param: bool = False):
        self.text = text
        self.offset = offset
        self.in_param = in_param

    def _name_end(self, pos: int) -> int:
        text = self.text
        if pos >= len(text):
            return pos
        first = text[pos]
        if first not in _NAME_START and not (self.in_param and first in _DIGITS):
            return pos
        end = pos + 1
        while end < len(text) and text[end] in _NAME_CHARS:
            end += 1
        return end

    def _closing_paren(self, pos: int) -> int:
        depth = 0
        for i in range(pos, len(self.text)):
            ch = self.text[i]
            if ch == "(":
                depth += 1
            elif ch == ")":
                depth -= 1
                if depth == 0:
                    return i
        return -1

    def tag_at(self, pos: int) -> Optional[Tuple[Tag, int]]:
        text = self.text
        if pos >= len(text) or text[pos] != "@":
            return None

        name_end = self._name_end(pos + 1)
        if name_end == pos + 1:
            return None

        tag = Tag(name=text[pos + 1:name_end])
        end = name_end

        # An unbalanced '(' is left to the following text run
        if end < len(text) and text[end] == "(":
            close = self._closing_paren(end)
            if close != -1:
                tag.param = text[end + 1:close]
                inner = _Scanner(tag.param, self.offset + end + 1, in_param=True)
                tag.nested = [t for token in inner.scan() for t in iter_tags([token])]
                end = close + 1

        tag.start = self.offset + pos
        tag.end = self.offset + end
        return tag, end

    def group_at(self, pos: int) -> Optional[Tuple[Token, int]]:
        first = self.tag_at(pos)
        if first is None:
            return None

        tags = [first[0]]
        end = first[1]
        while end < len(self.text) and self.text[end] == "|":
            member = self.tag_at(end + 1)
            if member is None:
                break
            tags.append(member[0])
            end = member[1]

        remap = None
        arrow = end
        while arrow < len(self.text) and self.text[arrow] == " ":
            arrow += 1
        if arrow < len(self.text) and self.text[arrow] == REMAP_ARROW:
            target = arrow + 1
            while target < len(self.text) and self.text[target] == " ":
                target += 1
            found = self.tag_at(target)
            if found is not None:
                remap, end = found

        if len(tags) == 1 and remap is None:
            return tags[0], end
        group = TagGroup(tags=tags, remap=remap,
                         start=self.offset + pos, end=self.offset + end)
        return group, end

    def scan(self) -> List[Token]:
        tokens: List[Token] = []
        text = self.text
        run_start = 0
        pos = 0

        while pos < len(text):
            if text[pos] == "@":
                found = self.group_at(pos)
                if found is not None:
                    if pos > run_start:
                        tokens.append(TextRun(text[run_start:pos],
                                              self.offset + run_start, self.offset + pos))
                    token, pos = found
                    tokens.append(token)
                    run_start = pos
                    continue
            pos += 1

        if run_start < len(text):
            tokens.append(TextRun(text[run_start:], self.offset + run_start,
                                  self.offset + len(text)))
        return tokens


# ============================================================
# PUBLIC API
# ============================================================

def tokenize(text: str) -> List[Token]:
    """Split text into TextRun / Tag / TagGroup tokens."""
    if not text:
        return []
    return _Scanner(text).scan()


def iter_tags(tokens: List[Token], nested: bool = True) -> Iterator[Tag]:
    """Yield every tag in a token stream, expanding groups and remaps."""
    for token in tokens:
        if isinstance(token, TextRun):
            continue
        members = token.tags if isinstance(token, TagGroup) else [token]
        if isinstance(token, TagGroup) and token.remap is not None:
            members = members + [token.remap]
        for tag in members:
            yield tag
            if nested:
                for inner in tag.nested:
                    yield inner


def extract_tags(text: str) -> List[str]:
    """Ordered, de-duplicated raw tags, including tags nested in parameters."""
    seen = []
    for tag in iter_tags(tokenize(text)):
        if tag.raw not in seen:
            seen.append(tag.raw)
    return seen


def top_level_tags(text: str) -> List[Tag]:
    """Tags outside any parameter, one entry per group member."""
    return list(iter_tags(tokenize(text), nested=False))


def first_tag(text: str) -> Optional[Tag]:
    tags = top_level_tags(text or "")
    return tags[0] if tags else None


def text_runs(text: str) -> List[str]:
    return [t.text for t in tokenize(text) if isinstance(t, TextRun)]
