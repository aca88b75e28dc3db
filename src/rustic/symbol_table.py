from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from rustic.errors import DuplicateDeclarationError, UnresolvedNameError
from rustic.rustic_ast import Type


class SymbolKind(Enum):
    LOCAL = "local"
    PARAM = "param"
    FUNCTION = "function"
    STRUCT = "struct"
    MODULE = "module"


@dataclass(eq=False)
class Symbol:
    id: int
    name: str
    kind: SymbolKind
    type: Optional[Type]
    node: Any  # Declaring AST node
    scope_id: int
    # Filled in for functions: parameter and return types
    param_types: List[Type] = field(default_factory=list)
    return_type: Optional[Type] = None
    # Defining module of a struct imported from another unit
    origin: Optional[str] = None

    def is_binding(self) -> bool:
        """Locals and parameters are the bindings ownership is inferred for"""
        return self.kind in (SymbolKind.LOCAL, SymbolKind.PARAM)

    def __str__(self):
        return f"{self.kind.value} {self.name}: {self.type}"


@dataclass
class Scope:
    """Represents a lexical scope in the program"""
    id: int
    parent: Optional[int]
    symbols: Dict[str, int] = field(default_factory=dict)  # name -> symbol id, in declaration order


class SymbolTable:
    """Scopes and symbols of one compilation unit.

    Symbols are addressed by integer id; AST nodes store ids rather than
    references so the tree stays free of back links.
    """

    def __init__(self):
        self.symbols: List[Symbol] = []
        self.scopes: List[Scope] = []
        self._stack: List[int] = []  # Active scope ids, innermost last

    @property
    def current_scope(self) -> Scope:
        return self.scopes[self._stack[-1]]

    def enter_scope(self) -> Scope:
        """Enter a new scope nested in the current one"""
        parent = self._stack[-1] if self._stack else None
        scope = Scope(len(self.scopes), parent)
        self.scopes.append(scope)
        self._stack.append(scope.id)
        return scope

    def exit_scope(self):
        """Exit current scope"""
        self._stack.pop()

    def declare(self, name: str, kind: SymbolKind, symbol_type: Optional[Type],
                node: Any, location=None) -> Symbol:
        """Declare `name` in the current scope; shadowing an outer scope is allowed"""
        scope = self.current_scope
        if name in scope.symbols:
            previous = self.symbols[scope.symbols[name]]
            previous_at = getattr(previous.node, 'location', None)
            notes = [f"previously declared at {previous_at}"] if previous_at else []
            raise DuplicateDeclarationError(
                message=f"'{name}' is already declared in this scope",
                location=location,
                notes=notes,
            )
        symbol = Symbol(len(self.symbols), name, kind, symbol_type, node, scope.id)
        self.symbols.append(symbol)
        scope.symbols[name] = symbol.id
        return symbol

    def lookup(self, name: str) -> Optional[Symbol]:
        """Look up a symbol in all scopes, innermost first"""
        scope_id = self._stack[-1] if self._stack else None
        while scope_id is not None:
            scope = self.scopes[scope_id]
            if name in scope.symbols:
                return self.symbols[scope.symbols[name]]
            scope_id = scope.parent
        return None

    def resolve(self, name: str, location=None) -> Symbol:
        symbol = self.lookup(name)
        if symbol is None:
            raise UnresolvedNameError(
                message=f"Cannot find '{name}' in this scope",
                location=location,
                name=name,
            )
        return symbol

    def symbol(self, symbol_id: int) -> Symbol:
        return self.symbols[symbol_id]

    def type_of(self, symbol_id: int) -> Optional[Type]:
        return self.symbols[symbol_id].type
