from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Optional, Union


# --- Types ---

class Type:
    """Base of the closed type variant: Primitive, Struct or Unresolved"""

    def is_copy(self) -> bool:
        """Whether values of this type are trivially copyable in Rust"""
        return False

    def accepts(self, other: 'Type') -> bool:
        """Assignment compatibility, allowing only int -> float widening"""
        if isinstance(self, UnresolvedType) or isinstance(other, UnresolvedType):
            return True
        if self == other:
            return True
        return self == FLOAT and other == INT


@dataclass(frozen=True)
class PrimitiveType(Type):
    name: str  # int, float, bool, string or void

    def is_copy(self) -> bool:
        return self.name != 'string'

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class StructType(Type):
    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class UnresolvedType(Type):
    """Type of an unmapped built-in call; compatible with everything"""

    def __str__(self) -> str:
        return "<unresolved>"


INT = PrimitiveType('int')
FLOAT = PrimitiveType('float')
BOOL = PrimitiveType('bool')
STRING = PrimitiveType('string')
VOID = PrimitiveType('void')
UNRESOLVED = UnresolvedType()

PRIMITIVES = {t.name: t for t in (INT, FLOAT, BOOL, STRING, VOID)}


class OwnershipDecision(Enum):
    MOVE = "Move"
    BORROW_SHARED = "BorrowShared"
    BORROW_EXCLUSIVE = "BorrowExclusive"
    CLONE = "Clone"


class Demand(Enum):
    """What a use site requires of the value it names"""
    OWN = "own"
    READ = "read"
    MUTATE = "mutate"


# --- Nodes ---

class Node:
    def __init__(self, location=None):
        self.location = location  # SourceLocation of the first token

    def children(self) -> Iterator['Node']:
        """Direct child nodes, in source order"""
        for value in vars(self).values():
            if isinstance(value, Node):
                yield value
            elif isinstance(value, list):
                for item in value:
                    if isinstance(item, Node):
                        yield item

    def walk(self) -> Iterator['Node']:
        """Pre-order traversal of this node and all of its descendants"""
        yield self
        for child in self.children():
            yield from child.walk()


class Statement(Node):
    pass


class Expression(Node):
    def __init__(self, location=None):
        super().__init__(location)
        self.type: Optional[Type] = None  # Set by the resolver
        self.widened = False  # int value flowing into a float slot


class TypeName(Node):
    """A type as written in the source, resolved later"""
    def __init__(self, name, location=None):
        super().__init__(location)
        self.name = name

    def __repr__(self):
        return f"TypeName({self.name})"


class Module(Node):
    def __init__(self, name, items, location=None):
        super().__init__(location)
        self.name = name
        self.items = items  # Imports, structs and functions in source order

    @property
    def imports(self) -> List['Import']:
        return [item for item in self.items if isinstance(item, Import)]

    @property
    def structs(self) -> List['StructDecl']:
        return [item for item in self.items if isinstance(item, StructDecl)]

    @property
    def functions(self) -> List['FnDecl']:
        return [item for item in self.items if isinstance(item, FnDecl)]


class Import(Node):
    def __init__(self, path, alias=None, location=None):
        super().__init__(location)
        self.path = path  # List of dotted components
        self.alias = alias

    @property
    def qualifier(self) -> str:
        """Name the module is referred to by inside this unit"""
        return self.alias or self.path[-1]

    @property
    def module_name(self) -> str:
        return '.'.join(self.path)

    def __repr__(self):
        suffix = f" as {self.alias}" if self.alias else ""
        return f"Import({self.module_name}{suffix})"


class FieldDecl(Node):
    def __init__(self, name, type_name, location=None):
        super().__init__(location)
        self.name = name
        self.type_name = type_name
        self.type: Optional[Type] = None


class StructDecl(Node):
    def __init__(self, name, fields, location=None):
        super().__init__(location)
        self.name = name
        self.fields = fields
        self.symbol_id: Optional[int] = None

    def field(self, name) -> Optional[FieldDecl]:
        for f in self.fields:
            if f.name == name:
                return f
        return None


class Param(Node):
    def __init__(self, name, type_name, location=None):
        super().__init__(location)
        self.name = name
        self.type_name = type_name
        self.type: Optional[Type] = None
        self.symbol_id: Optional[int] = None
        self.contract = None  # ParamContract, set by the ownership analyzer
        self.mutable = False


class FnDecl(Node):
    def __init__(self, name, params, return_type, body, location=None):
        super().__init__(location)
        self.name = name
        self.params = params
        self.return_type = return_type  # TypeName or None for void
        self.body = body
        self.symbol_id: Optional[int] = None
        self.returns: Optional[Type] = None  # Resolved return type


class Block(Statement):
    def __init__(self, statements=None, location=None):
        super().__init__(location)
        self.statements = statements or []


class LetStmt(Statement):
    def __init__(self, name, type_annotation, initializer, location=None):
        super().__init__(location)
        self.name = name
        self.type_annotation = type_annotation
        self.initializer = initializer
        self.symbol_id: Optional[int] = None
        self.type: Optional[Type] = None
        self.mutable = False


class AssignStmt(Statement):
    def __init__(self, target, value, location=None):
        super().__init__(location)
        self.target = target  # Identifier or FieldAccessExpr
        self.value = value


class ReturnStmt(Statement):
    def __init__(self, value=None, location=None):
        super().__init__(location)
        self.value = value

    def __repr__(self):
        return f"Return({self.value})"


class IfStmt(Statement):
    def __init__(self, condition, then_block, else_branch=None, location=None):
        super().__init__(location)
        self.condition = condition
        self.then_block = then_block
        self.else_branch: Union[Block, 'IfStmt', None] = else_branch


class WhileStmt(Statement):
    """While loop control structure"""
    def __init__(self, condition, body, location=None):
        super().__init__(location)
        self.condition = condition
        self.body = body


class ExprStmt(Statement):
    def __init__(self, expr, location=None):
        super().__init__(location)
        self.expr = expr


class Literal(Expression):
    def __init__(self, value, kind, location=None):
        super().__init__(location)
        self.value = value
        self.kind = kind  # int, float, bool or string

    def __repr__(self):
        return f"Literal({self.value!r})"


class Identifier(Expression):
    def __init__(self, name, explicit_move=False, location=None):
        super().__init__(location)
        self.name = name
        self.explicit_move = explicit_move  # Written as move(name)
        self.symbol_id: Optional[int] = None
        self.decision: Optional[OwnershipDecision] = None

    def __repr__(self):
        return f"Identifier({self.name})"


class BinaryExpr(Expression):
    def __init__(self, left, operator, right, location=None):
        super().__init__(location)
        self.left = left
        self.operator = operator
        self.right = right


class UnaryExpr(Expression):
    def __init__(self, operator, operand, location=None):
        super().__init__(location)
        self.operator = operator
        self.operand = operand


class CallExpr(Expression):
    """A call of `name(...)` or `module.name(...)`"""
    def __init__(self, module, name, args, location=None):
        super().__init__(location)
        self.module = module  # Qualifier or None for a local function
        self.name = name
        self.args = args
        # Set by the resolver: 'function', 'dependency' or 'builtin'
        self.target_kind: Optional[str] = None
        self.symbol_id: Optional[int] = None
        self.dependency: Optional[str] = None
        self.builtin = None  # MappingEntry for built-in calls
        self.arg_demands: List[Demand] = []

    def __repr__(self):
        qualified = f"{self.module}.{self.name}" if self.module else self.name
        return f"Call({qualified}, {self.args})"


class FieldAccessExpr(Expression):
    def __init__(self, receiver, field, location=None):
        super().__init__(location)
        self.receiver = receiver
        self.field = field


class FieldInit(Node):
    def __init__(self, name, value, location=None):
        super().__init__(location)
        self.name = name
        self.value = value


class StructLiteralExpr(Expression):
    def __init__(self, name, fields, location=None):
        super().__init__(location)
        self.name = name
        self.fields = fields  # List of FieldInit in source order


def place_root(expr: Expression) -> Optional[Identifier]:
    """The identifier at the root of a field access chain, if any"""
    while isinstance(expr, FieldAccessExpr):
        expr = expr.receiver
    return expr if isinstance(expr, Identifier) else None


def dump(node, indent: int = 0) -> str:
    """Indented textual form of a tree, used by --dump-ast"""
    pad = "  " * indent
    label = type(node).__name__
    attrs = []
    for key, value in vars(node).items():
        if key == 'location' or value is None or isinstance(value, Node):
            continue
        if isinstance(value, list) and any(isinstance(v, Node) for v in value):
            continue
        if isinstance(value, Enum):
            value = value.value
        attrs.append(f"{key}={value}")
    lines = [f"{pad}{label}({', '.join(attrs)})"]
    for child in node.children():
        lines.append(dump(child, indent + 1))
    return "\n".join(lines)
