"""Pull code fragments out of model output.

Fenced blocks (```lang ... ```) are matched lazily, so an unterminated fence
simply yields nothing for that span. Inline `spans` are optional and always
come after the fenced fragments.
"""

import re
from dataclasses import dataclass

_FENCED = re.compile(r"```[ \t]*(\w+)?[ \t]*\r?\n(.*?)\r?\n[ \t]*```", re.DOTALL)
_INLINE = re.compile(r"`([^`]+)`")


@dataclass(frozen=True)
class CodeFragment:
    language: str | None
    code: str


def extract_code_blocks(text: str, detect_single_line: bool = False) -> list[CodeFragment]:
    """Return every fenced block in source order, then (optionally) inline spans."""
    results: list[CodeFragment] = []
    for match in _FENCED.finditer(text):
        language = match.group(1)
        results.append(CodeFragment(
            language=language.strip() if language else None,
            code=match.group(2).strip(),
        ))

    if detect_single_line:
        for match in _INLINE.finditer(text):
            results.append(CodeFragment(language=None, code=match.group(1).strip()))

    return results


def extract_code(text: str, language: str = "python") -> str:
    """Concatenate the bodies of blocks tagged with *language* into one program."""
    pattern = re.compile(r"```" + re.escape(language) + r"\b(.*?)```", re.DOTALL)
    return "\n".join(m.group(1).strip() for m in pattern.finditer(text))
