"""Group config: embedding table shapes per sparse feature group."""

import logging
import os
from dataclasses import dataclass, replace
from typing import Iterable, List, Sequence, Tuple

from .errors import ConfigError
from .shape import INT32_MAX


logger = logging.getLogger(__name__)

# Widest group prefix a feature id can carry (18 bits).
MAX_GROUP_ID = (1 << 18) - 1


@dataclass(frozen=True)
class GroupConfigItem:
    """Embedding table shape of one feature group."""
    group_id: int
    embedding_row: int
    embedding_col: int

    def validate(self) -> None:
        """Raise ConfigError when the item violates its invariants."""
        if self.group_id < 0 or self.group_id > MAX_GROUP_ID:
            raise ConfigError(f"Invalid group id: {self.group_id}.")
        if self.embedding_row <= 0:
            raise ConfigError(f"Invalid embedding row: {self.embedding_row}.")
        if self.embedding_col <= 0:
            raise ConfigError(f"Invalid embedding col: {self.embedding_col}.")
        if self.embedding_row * self.embedding_col > INT32_MAX:
            raise ConfigError(
                f"Too large embedding row and embedding col: "
                f"{self.embedding_row} {self.embedding_col}."
            )


class _GroupCollector:
    """Accumulates validated items, rejecting duplicate group ids."""

    def __init__(self):
        self.items: List[GroupConfigItem] = []
        self._seen = set()
        self.max_group_id = 0

    def add(self, item: GroupConfigItem, where: str) -> None:
        try:
            item.validate()
        except ConfigError as e:
            raise ConfigError(f"{e} ({where})") from None
        if item.group_id in self._seen:
            raise ConfigError(f"Duplicate group id: {item.group_id} ({where}).")
        self._seen.add(item.group_id)
        self.items.append(item)
        self.max_group_id = max(self.max_group_id, item.group_id)

    def finish(self, source: str) -> Tuple[List[GroupConfigItem], int]:
        if not self.items:
            raise ConfigError(f"No group found in {source}.")
        logger.info("Loaded %d groups.", len(self.items))
        return self.items, self.max_group_id + 1


def load_group_config(path: str) -> Tuple[List[GroupConfigItem], int]:
    """
    Load a group config file.

    Each line holds 'group_id embedding_row embedding_col'. Lines containing
    '#' or '//' are comments; blank lines are skipped.

    Args:
        path: Config file path

    Returns:
        (items, max_group_id + 1)
    """
    if not path:
        raise ConfigError("Group config file is not specified.")
    try:
        f = open(path, "r")
    except OSError as e:
        raise ConfigError(f"Failed to open: {path}: {e}") from e

    collector = _GroupCollector()
    with f:
        for lineno, line in enumerate(f, 1):
            if "#" in line or "//" in line:
                continue
            fields = line.split()
            if not fields:
                continue
            where = f"{path}:{lineno}"
            if len(fields) != 3:
                raise ConfigError(f"Invalid line: {line.rstrip()!r} ({where}).")
            try:
                group_id, row, col = (int(x) for x in fields)
            except ValueError:
                raise ConfigError(f"Invalid line: {line.rstrip()!r} ({where}).") from None
            collector.add(GroupConfigItem(group_id, row, col), where)
    return collector.finish(path)


def parse_group_config(info: str) -> Tuple[List[GroupConfigItem], int]:
    """
    Parse an inline group config.

    Items are comma separated, each 'group_id:col' (row 1) or
    'group_id:row:col'.

    Returns:
        (items, max_group_id + 1)
    """
    if not info:
        raise ConfigError("Group config info is not specified.")

    collector = _GroupCollector()
    for str_item in info.split(","):
        where = f"item {str_item!r}"
        try:
            fields = [int(x) for x in str_item.split(":")]
        except ValueError:
            raise ConfigError(f"Invalid info: {info!r} ({where}).") from None
        if len(fields) == 2:
            item = GroupConfigItem(fields[0], 1, fields[1])
        elif len(fields) == 3:
            item = GroupConfigItem(*fields)
        else:
            raise ConfigError(f"Invalid info: {info!r} ({where}).")
        collector.add(item, where)
    return collector.finish("inline group config")


def guess_group_config(file_or_info: str) -> Tuple[List[GroupConfigItem], int]:
    """Load from a file when the argument names one, otherwise parse it inline."""
    if not file_or_info:
        raise ConfigError("Group config is not specified.")
    if os.path.isfile(file_or_info):
        return load_group_config(file_or_info)
    return parse_group_config(file_or_info)


def get_lr_group_config(items: Iterable[GroupConfigItem]) -> List[GroupConfigItem]:
    """Same groups and rows with every embedding col forced to 1."""
    return [replace(item, embedding_col=1) for item in items]


def is_fm_group_config(items: Sequence[GroupConfigItem]) -> bool:
    """True iff items is non-empty and all items share one embedding col."""
    if not items:
        return False
    k = items[0].embedding_col
    return all(item.embedding_col == k for item in items)


def check_fm_group_config(items: Sequence[GroupConfigItem]) -> None:
    """Raise ConfigError unless is_fm_group_config(items)."""
    if not items:
        raise ConfigError("items is empty.")
    k = items[0].embedding_col
    for item in items:
        if item.embedding_col != k:
            raise ConfigError(f"Inconsistent embedding col: {k} vs {item.embedding_col}.")


def get_total_embedding_col(items: Iterable[GroupConfigItem]) -> int:
    return sum(item.embedding_col for item in items)
