"""Read test attributes from a test file's YAML frontmatter block."""

import re
from pathlib import Path

import yaml
from pydantic import ValidationError

from tyrant.models.result import TestAttributes

FRONTMATTER_RE = re.compile(r"/\*---(.*?)---\*/", re.DOTALL)


def parse_frontmatter(source: str) -> TestAttributes:
    """Parse the ``/*--- ... ---*/`` block of a test's source.

    Sources without a frontmatter block get empty attributes.

    Raises:
        ValueError: If the block is not valid YAML or has an invalid shape

    """
    match = FRONTMATTER_RE.search(source)
    if match is None:
        return TestAttributes()

    try:
        data = yaml.safe_load(match.group(1))
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in frontmatter: {e}") from e

    if data is None:
        return TestAttributes()
    if not isinstance(data, dict):
        raise ValueError("Invalid frontmatter: expected a mapping")

    try:
        return TestAttributes.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"Invalid frontmatter schema: {e}") from e


def read_attributes(path: Path) -> TestAttributes:
    """Read and parse the frontmatter of the test file at ``path``."""
    return parse_frontmatter(path.read_text(encoding="utf-8"))
