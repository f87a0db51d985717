"""
Image list artifacts
One reference per line, `#` comments and blank lines ignored
"""
from pathlib import Path
from typing import Iterable, List, Optional

from offline_mirror.exceptions import ImageListNotFoundError, InvalidReferenceError
from offline_mirror.models.reference import ImageReference


def unique_references(references: Iterable[ImageReference]) -> List[ImageReference]:
    """
    Drop repeated references, keeping the first occurrence
    :param references:
    :return:
    """
    seen = set()
    result = []
    for ref in references:
        if ref not in seen:
            seen.add(ref)
            result.append(ref)
    return result


def parse_image_list(text: str, origin: str = "<string>") -> List[ImageReference]:
    """
    Parse the contents of an image list
    :param text:
    :param origin: file name used in error messages
    :return: deduplicated references in file order
    """
    references = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        try:
            references.append(ImageReference.parse(line).check_qualified())
        except InvalidReferenceError as e:
            raise InvalidReferenceError(line, f"{e.reason} ({origin}:{lineno})") from e
    return unique_references(references)


def read_image_list(path: Path) -> List[ImageReference]:
    if not path.is_file():
        raise ImageListNotFoundError(f"Image list not found: {path}")
    return parse_image_list(path.read_text(encoding="utf-8"), origin=str(path))


def write_image_list(
        path: Path,
        references: Iterable[ImageReference],
        header: Optional[List[str]] = None
) -> None:
    """
    Write references one per line, preceded by `#` header lines
    :param path:
    :param references:
    :param header:
    :return:
    """
    entries = [str(ref.check_qualified()) for ref in unique_references(references)]
    lines = [f"# {line}" for line in header or []]
    if lines:
        lines.append("")
    lines.extend(entries)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
