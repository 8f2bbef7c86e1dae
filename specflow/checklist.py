"""Checklist markdown parsing.

Checklists live in ``<feature>/checklists/*.md``. Items that do not
carry their own identifier get one from the checklist type, e.g.
``V-001`` for the first item of a verification checklist.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Optional

from .errors import NotFoundError
from .fs_utils import read_markdown
from .models import (
    ChecklistData,
    ChecklistItem,
    ChecklistItemStatus,
    ChecklistSection,
    ChecklistType,
    FeatureChecklists,
    classify_checklist,
)


logger = logging.getLogger("specflow.checklist")

ITEM_LINE = re.compile(r"^-\s*\[([xX ~\-])\]\s*(.+)$")
HEADER = re.compile(r"^(#{2,4})\s+(.+)")
EXISTING_ID = re.compile(r"^([A-Z]-[A-Z0-9]+)\b", re.IGNORECASE)

_ITEM_STATUS = {
    "x": ChecklistItemStatus.DONE,
    "X": ChecklistItemStatus.DONE,
    " ": ChecklistItemStatus.TODO,
    "~": ChecklistItemStatus.SKIPPED,
    "-": ChecklistItemStatus.SKIPPED,
}


def parse_checklist_content(
    content: str,
    file_path: Optional[Path] = None,
    checklist_type: Optional[ChecklistType] = None,
) -> ChecklistData:
    """Parse checklist markdown; only level-2 headings open a new section."""
    if checklist_type is None:
        checklist_type = classify_checklist(file_path) if file_path else ChecklistType.OTHER

    data = ChecklistData(file_path=file_path, type=checklist_type)
    section: Optional[ChecklistSection] = None
    auto_index = 1

    for index, line in enumerate(content.splitlines()):
        line_number = index + 1

        if data.title is None and line.startswith("# "):
            data.title = line[2:].strip()
            continue

        header = HEADER.match(line)
        if header:
            if len(header.group(1)) == 2:
                section = ChecklistSection(name=header.group(2).strip())
                data.sections.append(section)
            continue

        match = ITEM_LINE.match(line)
        if not match:
            continue

        description = match.group(2).strip()
        existing = EXISTING_ID.match(description)
        if existing:
            item_id = existing.group(1).upper()
        else:
            item_id = f"{checklist_type.prefix}-{auto_index:03d}"
            auto_index += 1

        item = ChecklistItem(
            id=item_id,
            description=description,
            status=_ITEM_STATUS[match.group(1)],
            section=section.name if section else None,
            line=line_number,
        )
        if section is not None:
            section.items.append(item)
        data.items.append(item)

    return data


def read_checklist(path: Path) -> ChecklistData:
    if not path.exists():
        raise NotFoundError("Checklist", path)
    return parse_checklist_content(read_markdown(path), path)


def read_feature_checklists(feature_dir: Path) -> FeatureChecklists:
    """Read every ``checklists/*.md`` file of a feature, sorted by filename."""
    result = FeatureChecklists(feature_dir=feature_dir)
    checklists_dir = feature_dir / "checklists"
    if not checklists_dir.is_dir():
        return result

    for path in sorted(checklists_dir.glob("*.md")):
        if path.is_file():
            result.checklists.append(read_checklist(path))

    logger.debug(f"Read {len(result.checklists)} checklists from {checklists_dir}")
    return result


def are_all_checklists_complete(checklists: FeatureChecklists) -> bool:
    """True when every item of every checklist is done or skipped."""
    return all(c.is_complete for c in checklists.checklists)


def find_next_checklist_item(checklist: ChecklistData) -> Optional[ChecklistItem]:
    for item in checklist.items:
        if item.status is ChecklistItemStatus.TODO:
            return item
    return None
