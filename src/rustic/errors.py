from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Any


@dataclass(frozen=True)
class SourceLocation:
    """Location in source code"""
    file: str
    line: int
    column: int
    offset: int = 0

    def __str__(self) -> str:
        return f"{self.file}:{self.line}:{self.column}"


@dataclass(eq=False)
class CompileError(Exception):
    """Detailed compile error with source location and context"""
    message: str
    error_type: str = "CompilationError"
    location: Optional[SourceLocation] = None
    node: Optional[Any] = None  # AST node if available
    notes: List[str] = field(default_factory=list)  # Additional notes/hints

    def __str__(self) -> str:
        loc = str(self.location) if self.location else "unknown location"
        parts = [f"{self.error_type} at {loc}: {self.message}"]
        if self.notes:
            parts.append("Notes:")
            parts.extend(f"  - {note}" for note in self.notes)
        return "\n".join(parts)

    def render(self, source: Optional[str] = None) -> str:
        """Format the error with the offending source line and a caret"""
        parts = [str(self)]
        if source is not None and self.location:
            context = get_source_context(source, self.location.line)
            if context:
                parts.append("Context:")
                parts.append(context)
                parts.append(" " * (self.location.column + 8) + "^")
        return "\n".join(parts)


class LexErrorKind(Enum):
    UNTERMINATED_STRING = "UnterminatedString"
    INVALID_CHARACTER = "InvalidCharacter"
    MALFORMED_NUMBER = "MalformedNumber"


@dataclass(eq=False)
class LexError(CompileError):
    kind: LexErrorKind = LexErrorKind.INVALID_CHARACTER
    error_type: str = "LexError"


@dataclass(eq=False)
class ParseError(CompileError):
    expected: List[str] = field(default_factory=list)
    found: str = ""
    error_type: str = "ParseError"


@dataclass(eq=False)
class DuplicateDeclarationError(CompileError):
    error_type: str = "DuplicateDeclarationError"


@dataclass(eq=False)
class UnresolvedNameError(CompileError):
    name: str = ""
    error_type: str = "UnresolvedNameError"


@dataclass(eq=False)
class TypeMismatchError(CompileError):
    expected: str = ""
    found: str = ""
    error_type: str = "TypeMismatchError"


@dataclass(eq=False)
class ArityError(CompileError):
    expected: int = 0
    found: int = 0
    error_type: str = "ArityError"


@dataclass(eq=False)
class UnknownFieldError(CompileError):
    error_type: str = "UnknownFieldError"


@dataclass(eq=False)
class RecursiveStructError(CompileError):
    cycle: List[str] = field(default_factory=list)
    error_type: str = "RecursiveStructError"


@dataclass(eq=False)
class UseAfterMoveError(CompileError):
    """A binding used after an explicit move; carries both positions"""
    moved_at: Optional[SourceLocation] = None
    error_type: str = "UseAfterMoveError"


@dataclass(eq=False)
class AmbiguousOwnershipError(CompileError):
    error_type: str = "AmbiguousOwnershipError"


@dataclass(eq=False)
class UnknownBuiltinError(CompileError):
    error_type: str = "UnknownBuiltinError"


@dataclass(eq=False)
class MappingTableError(CompileError):
    """Malformed or missing mapping data; a driver configuration problem"""
    error_type: str = "MappingTableError"


def get_source_context(source: str, line: int, context_lines: int = 0) -> Optional[str]:
    """Get source code context around a line of an in-memory source text"""
    lines = source.splitlines()
    if not 1 <= line <= len(lines):
        return None

    start = max(0, line - context_lines - 1)
    end = min(len(lines), line + context_lines)

    context = []
    for i in range(start, end):
        line_num = i + 1
        prefix = '> ' if line_num == line else '  '
        context.append(f"{prefix}{line_num:4d} | {lines[i].rstrip()}")
    return '\n'.join(context)
