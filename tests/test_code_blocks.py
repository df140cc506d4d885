"""Tests for code fragment extraction from model output."""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
from code_blocks import CodeFragment, extract_code, extract_code_blocks


class TestFencedBlocks:
    def test_blocks_in_source_order(self):
        """Each fenced block comes back once, in the order it appears."""
        text = (
            "First:\n```python\nprint(1)\n```\n"
            "then some prose\n"
            "```bash\necho hi\n```\n"
            "and last\n```\nplain block\n```\n"
        )
        blocks = extract_code_blocks(text)
        assert blocks == [
            CodeFragment("python", "print(1)"),
            CodeFragment("bash", "echo hi"),
            CodeFragment(None, "plain block"),
        ]

    def test_whitespace_trimmed(self):
        """Leading and trailing whitespace inside the block is stripped."""
        text = "```python  \n\n    x = 1\n\n```"
        assert extract_code_blocks(text) == [CodeFragment("python", "x = 1")]

    def test_windows_line_endings(self):
        """\\r\\n line endings are handled like \\n."""
        text = "```python\r\nx = 1\r\ny = 2\r\n```\r\n"
        blocks = extract_code_blocks(text)
        assert len(blocks) == 1
        assert blocks[0].language == "python"
        assert blocks[0].code.splitlines() == ["x = 1", "y = 2"]

    def test_multiline_body_kept(self):
        text = "```python\ndef f():\n    return 1\n```"
        assert extract_code_blocks(text)[0].code == "def f():\n    return 1"

    def test_unterminated_fence_yields_nothing(self):
        """An unclosed fence is not an error, just no match."""
        assert extract_code_blocks("```python\nprint(1)\n") == []

    def test_no_blocks(self):
        assert extract_code_blocks("just prose, nothing to run") == []


class TestInlineSpans:
    def test_inline_spans_off_by_default(self):
        assert extract_code_blocks("use `ls -la` here") == []

    def test_inline_spans_collected(self):
        blocks = extract_code_blocks("use `ls -la` or ` pwd `", detect_single_line=True)
        assert blocks == [CodeFragment(None, "ls -la"), CodeFragment(None, "pwd")]

    def test_inline_spans_after_fenced(self):
        """Inline spans are appended after every fenced block."""
        text = "call `f()` first\n\n```python\nf()\n```"
        blocks = extract_code_blocks(text, detect_single_line=True)
        assert blocks[0] == CodeFragment("python", "f()")
        assert CodeFragment(None, "f()") in blocks[1:]
        assert all(b.language is None for b in blocks[1:])


class TestExtractCode:
    def test_concatenates_python_blocks(self):
        text = (
            "```python\nx = 2\n```\n"
            "```bash\nrm -rf /\n```\n"
            "```python\nprint(x * 3)\n```"
        )
        assert extract_code(text) == "x = 2\nprint(x * 3)"

    def test_untagged_blocks_ignored(self):
        assert extract_code("```\nprint(1)\n```") == ""

    def test_other_language(self):
        assert extract_code("```sql\nSELECT 1\n```", language="sql") == "SELECT 1"
