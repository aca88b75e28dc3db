"""Standard library mapping for Rustic built-in modules"""
import functools
import json
import logging
import re
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterator, List, Optional, Tuple

from rustic.errors import MappingTableError

logger = logging.getLogger(__name__)

OWNERSHIP_KINDS = ('value', 'ref', 'mut')
TYPE_NAMES = ('int', 'float', 'bool', 'string', 'void', 'any')

_PLACEHOLDER = re.compile(r'\$(\d+)')
# A placeholder standing alone between call delimiters, e.g. `f($0, $1)`
_DELIMITED = re.compile(r'(?<=[(,])\s*\$(\d+)\s*(?=[),])')


@dataclass(frozen=True)
class MappingEntry:
    """How one built-in `module.function` call is written in Rust"""
    module: str
    function: str
    target: str  # Template with $0, $1 ... argument placeholders
    ownership: Tuple[str, ...]  # Per argument: value, ref or mut
    param_types: Tuple[str, ...]  # Per argument type name, or 'any'
    return_type: str

    @property
    def arity(self) -> int:
        return len(self.param_types)

    @property
    def qualified_name(self) -> str:
        return f"{self.module}.{self.function}"

    def is_delimited(self, index: int) -> bool:
        """Whether every use of argument `index` is a whole call argument"""
        uses = [int(i) for i in _PLACEHOLDER.findall(self.target)].count(index)
        alone = [int(i) for i in _DELIMITED.findall(self.target)].count(index)
        return uses == alone

    def render(self, args: List[str]) -> str:
        """Substitute rendered argument expressions into the template"""
        return _PLACEHOLDER.sub(lambda m: args[int(m.group(1))], self.target)


class MappingTable:
    """Immutable table keyed by (module, function, arity)"""

    def __init__(self, version: str, entries: List[MappingEntry]):
        self.version = version
        table: Dict[Tuple[str, str, int], MappingEntry] = {}
        for entry in entries:
            key = (entry.module, entry.function, entry.arity)
            if key in table:
                raise MappingTableError(
                    message=f"Duplicate mapping for {entry.qualified_name}/{entry.arity}")
            table[key] = entry
        self._entries = MappingProxyType(table)
        self._modules = frozenset(entry.module for entry in entries)

    def lookup(self, module: str, function: str, arity: int) -> Optional[MappingEntry]:
        return self._entries.get((module, function, arity))

    def arities(self, module: str, function: str) -> List[int]:
        """Arities a built-in is mapped for; empty when it is not mapped at all"""
        return sorted(a for (m, f, a) in self._entries if m == module and f == function)

    def has_module(self, module: str) -> bool:
        return module in self._modules

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[MappingEntry]:
        return iter(self._entries.values())

    @classmethod
    def from_dict(cls, data, source: str = "<data>") -> 'MappingTable':
        if not isinstance(data, dict) or 'entries' not in data:
            raise MappingTableError(message=f"{source}: expected an object with 'entries'")
        version = str(data.get('version', '0'))
        entries = [_parse_entry(raw, source, i) for i, raw in enumerate(data['entries'])]
        logger.debug(f"Loaded {len(entries)} mapping entries from {source} (version {version})")
        return cls(version, entries)

    @classmethod
    def load(cls, path) -> 'MappingTable':
        """Load a mapping table from a JSON file"""
        path = Path(path)
        try:
            data = json.loads(path.read_text(encoding='utf-8'))
        except OSError as e:
            raise MappingTableError(message=f"Cannot read mapping table {path}: {e}") from e
        except json.JSONDecodeError as e:
            raise MappingTableError(message=f"Invalid JSON in mapping table {path}: {e}") from e
        return cls.from_dict(data, str(path))


def _parse_entry(raw, source: str, index: int) -> MappingEntry:
    where = f"{source}: entry {index}"
    try:
        entry = MappingEntry(
            module=raw['module'],
            function=raw['function'],
            target=raw['target'],
            ownership=tuple(raw['ownership']),
            param_types=tuple(raw['params']),
            return_type=raw['returns'],
        )
    except (KeyError, TypeError) as e:
        raise MappingTableError(message=f"{where}: missing or malformed field {e}") from e

    if len(entry.ownership) != entry.arity:
        raise MappingTableError(message=f"{where}: ownership list does not match params")
    for kind in entry.ownership:
        if kind not in OWNERSHIP_KINDS:
            raise MappingTableError(message=f"{where}: unknown ownership '{kind}'")
    for name in entry.param_types:
        if name not in TYPE_NAMES or name == 'void':
            raise MappingTableError(message=f"{where}: unknown parameter type '{name}'")
    if entry.return_type not in TYPE_NAMES or entry.return_type == 'any':
        raise MappingTableError(message=f"{where}: unknown return type '{entry.return_type}'")
    for placeholder in _PLACEHOLDER.findall(entry.target):
        if int(placeholder) >= entry.arity:
            raise MappingTableError(
                message=f"{where}: placeholder ${placeholder} exceeds arity {entry.arity}")
    return entry


@functools.lru_cache(maxsize=None)
def default_table() -> MappingTable:
    """The bundled table, loaded once per process and shared read-only"""
    text = (resources.files('rustic') / 'data' / 'stdlib_map.json').read_text(encoding='utf-8')
    return MappingTable.from_dict(json.loads(text), 'stdlib_map.json')
