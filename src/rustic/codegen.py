"""
Code Generator for Rustic.
Translates the resolved, ownership-annotated AST into Rust source text.
"""
import logging
from typing import Dict, List, Tuple

import rustic.rustic_ast as ast
from rustic.errors import CompileError, UnknownBuiltinError
from rustic.ownership import ParamContract
from rustic.rustic_ast import Demand, OwnershipDecision, PrimitiveType, StructType, Type
from rustic.symbol_table import SymbolKind, SymbolTable

logger = logging.getLogger(__name__)

RUST_RESERVED = frozenset({
    "as", "async", "await", "break", "const", "continue", "crate", "dyn",
    "else", "enum", "extern", "false", "fn", "for", "gen", "if", "impl", "in",
    "let", "loop", "match", "mod", "move", "mut", "pub", "ref", "return",
    "self", "Self", "static", "struct", "super", "trait", "true", "type",
    "union", "unsafe", "use", "where", "while", "abstract", "become", "box",
    "do", "final", "macro", "override", "priv", "try", "typeof", "unsized",
    "virtual", "yield",
})

# Keywords that cannot be written as raw identifiers
_NOT_RAW = frozenset({"crate", "self", "Self", "super", "_"})

# Type and crate names the emitted code refers to; a user item of the same name would shadow them
_SHADOWING = frozenset({
    "i8", "i16", "i32", "i64", "i128", "isize", "u8", "u16", "u32", "u64", "u128", "usize",
    "f32", "f64", "bool", "char", "str", "String", "Vec", "Box", "Option", "Result",
    "std", "core", "alloc",
})

RUST_TYPES = {
    'int': 'i64',
    'float': 'f64',
    'bool': 'bool',
    'string': 'String',
    'void': '()',
}

# Rust operator precedence (higher binds tighter)
_PREC = {
    "||": 1, "&&": 2,
    "==": 3, "!=": 3, "<": 3, "<=": 3, ">": 3, ">=": 3,
    "+": 8, "-": 8,
    "*": 9, "/": 9, "%": 9,
}
_COMPARISON = 3
_UNARY = 10
_ATOM = 12

I32_MAX = 2 ** 31 - 1


def rust_ident(name: str) -> str:
    if name in _NOT_RAW or name in _SHADOWING:
        return name + "_"
    if name in RUST_RESERVED:
        return "r#" + name
    return name


def rust_type(t: Type) -> str:
    if isinstance(t, PrimitiveType):
        return RUST_TYPES[t.name]
    if isinstance(t, StructType):
        return rust_ident(t.name)
    raise CompileError(message=f"Cannot translate type {t}", error_type="CodegenError")


def escape_string(value: str) -> str:
    """Escape a string for use in a Rust string literal (without quotes)"""
    out = []
    for c in value:
        if c == '\\':
            out.append('\\\\')
        elif c == '"':
            out.append('\\"')
        elif c == '\n':
            out.append('\\n')
        elif c == '\t':
            out.append('\\t')
        elif c == '\r':
            out.append('\\r')
        elif ord(c) < 0x20 or ord(c) == 0x7f:
            out.append(f'\\u{{{ord(c):x}}}')
        else:
            out.append(c)
    return ''.join(out)


def float_literal(value: float) -> str:
    if value != value:
        return "f64::NAN"
    if value == float('inf'):
        return "f64::INFINITY"
    text = repr(value)
    if '.' not in text and 'e' not in text:
        text += '.0'
    return text


class RustCodeGenerator:
    """Emit Rust code for one compilation unit.

    Output depends only on the annotated tree, so identical input always
    yields byte-identical text.
    """

    def __init__(self, symbol_table: SymbolTable, dependencies=None):
        self.symbol_table = symbol_table
        self.dependencies = dependencies or {}
        self.lines: List[str] = []
        self.indent = 0

    def generate(self, module: ast.Module) -> str:
        self.lines = []
        self.indent = 0
        self.line(f"// Generated by rustic from module `{module.name}`. Do not edit.")
        uses = self.gen_uses(module)
        if uses:
            self.line("")
            for use in uses:
                self.line(use)
        for item in module.items:
            if isinstance(item, ast.StructDecl):
                self.line("")
                self.gen_StructDecl(item)
            elif isinstance(item, ast.FnDecl):
                self.line("")
                self.gen_FnDecl(item)
        logger.debug(f"Generated {len(self.lines)} lines for {module.name}")
        return "\n".join(self.lines) + "\n"

    def line(self, text: str):
        self.lines.append(("    " * self.indent + text) if text else "")

    # --- items ---

    def gen_uses(self, module: ast.Module) -> List[str]:
        # defining module -> imported struct names, in declaration order
        foreign: Dict[str, List[str]] = {}
        for symbol in self.symbol_table.symbols:
            if symbol.kind is SymbolKind.STRUCT and symbol.origin is not None:
                foreign.setdefault(symbol.origin, []).append(rust_ident(symbol.name))
        uses = []
        for imp in module.imports:
            if imp.module_name not in self.dependencies:
                continue  # Built-in modules are rewritten call by call
            path = "::".join(rust_ident(part) for part in imp.path)
            alias = f" as {rust_ident(imp.alias)}" if imp.alias else ""
            uses.append(f"use crate::{path}{alias};")
            uses.extend(self.gen_struct_uses(imp.module_name, foreign.pop(imp.module_name, [])))
        # Structs reached through a dependency's own imports
        for origin in sorted(foreign):
            uses.extend(self.gen_struct_uses(origin, foreign[origin]))
        return uses

    def gen_struct_uses(self, origin: str, structs: List[str]) -> List[str]:
        path = "::".join(rust_ident(part) for part in origin.split('.'))
        if len(structs) == 1:
            return [f"use crate::{path}::{structs[0]};"]
        if structs:
            return [f"use crate::{path}::{{{', '.join(structs)}}};"]
        return []

    def gen_StructDecl(self, node: ast.StructDecl):
        self.line("#[derive(Debug, Clone, PartialEq)]")
        if not node.fields:
            self.line(f"pub struct {rust_ident(node.name)} {{}}")
            return
        self.line(f"pub struct {rust_ident(node.name)} {{")
        self.indent += 1
        for field_decl in node.fields:
            self.line(f"pub {rust_ident(field_decl.name)}: {rust_type(field_decl.type)},")
        self.indent -= 1
        self.line("}")

    def gen_FnDecl(self, node: ast.FnDecl):
        params = ", ".join(self.gen_param(param) for param in node.params)
        returns = "" if node.returns == ast.VOID else f" -> {rust_type(node.returns)}"
        self.line(f"pub fn {rust_ident(node.name)}({params}){returns} {{")
        self.gen_body(node.body)
        self.line("}")

    def gen_param(self, param: ast.Param) -> str:
        name = rust_ident(param.name)
        ty = rust_type(param.type)
        if param.contract is ParamContract.SHARED:
            return f"{name}: &{ty}"
        if param.contract is ParamContract.EXCLUSIVE:
            return f"{name}: &mut {ty}"
        prefix = "mut " if param.mutable else ""
        return f"{prefix}{name}: {ty}"

    # --- statements ---

    def gen_body(self, block: ast.Block):
        self.indent += 1
        for stmt in block.statements:
            self.gen_statement(stmt)
        self.indent -= 1

    def gen_statement(self, stmt):
        method = getattr(self, f'gen_{stmt.__class__.__name__}')
        method(stmt)

    def gen_Block(self, node: ast.Block):
        self.line("{")
        self.gen_body(node)
        self.line("}")

    def gen_LetStmt(self, node: ast.LetStmt):
        prefix = "mut " if node.mutable else ""
        value = self.gen_arg(node.initializer, Demand.OWN)
        self.line(f"let {prefix}{rust_ident(node.name)}: {rust_type(node.type)} = {value};")

    def gen_AssignStmt(self, node: ast.AssignStmt):
        value = self.gen_arg(node.value, Demand.OWN)
        self.line(f"{self.gen_place(node.target)} = {value};")

    def gen_ReturnStmt(self, node: ast.ReturnStmt):
        if node.value is None:
            self.line("return;")
        else:
            self.line(f"return {self.gen_arg(node.value, Demand.OWN)};")

    def gen_IfStmt(self, node: ast.IfStmt):
        self.line(f"if {self.gen_condition(node.condition)} {{")
        self.gen_body(node.then_block)
        branch = node.else_branch
        while isinstance(branch, ast.IfStmt):
            self.line(f"}} else if {self.gen_condition(branch.condition)} {{")
            self.gen_body(branch.then_block)
            branch = branch.else_branch
        if branch is not None:
            self.line("} else {")
            self.gen_body(branch)
        self.line("}")

    def gen_WhileStmt(self, node: ast.WhileStmt):
        self.line(f"while {self.gen_condition(node.condition)} {{")
        self.gen_body(node.body)
        self.line("}")

    def gen_ExprStmt(self, node: ast.ExprStmt):
        expr = node.expr
        if isinstance(expr, ast.CallExpr):
            self.line(f"{self.gen_value(expr)[0]};")
        elif expr.type.is_copy():
            self.line(f"let _ = {self.gen_value(expr)[0]};")
        else:
            self.line(f"let _ = {self.gen_borrow(expr, mutable=False)};")

    def gen_condition(self, expr) -> str:
        text, _ = self.gen_value(expr)
        return text

    # --- expressions ---

    def gen_arg(self, expr, demand: Demand) -> str:
        """Render an expression for a slot with the given demand"""
        if demand is Demand.OWN:
            return self.gen_value(expr)[0]
        return self.gen_borrow(expr, mutable=demand is Demand.MUTATE)

    def gen_value(self, expr) -> Tuple[str, int]:
        """Render an expression producing an owned value; returns (text, precedence)"""
        method = getattr(self, f'gen_{expr.__class__.__name__}')
        text, prec = method(expr)
        if expr.widened:
            # `as` binds tighter than any binary operator
            if prec < _UNARY:
                text = f"({text})"
            return f"({text} as f64)", _ATOM
        return text, prec

    def gen_borrow(self, expr, mutable: bool) -> str:
        marker = "&mut " if mutable else "&"
        if isinstance(expr, ast.Identifier):
            if self.is_ref_bound(expr):
                return rust_ident(expr.name)
            return marker + rust_ident(expr.name)
        if isinstance(expr, ast.FieldAccessExpr):
            return marker + self.gen_place(expr)
        text, prec = self.gen_value(expr)
        if prec < _UNARY or isinstance(expr, ast.StructLiteralExpr):
            text = f"({text})"
        return marker + text

    def gen_place(self, expr) -> str:
        if isinstance(expr, ast.Identifier):
            return rust_ident(expr.name)
        if isinstance(expr, ast.FieldAccessExpr):
            return f"{self.gen_receiver(expr.receiver)}.{rust_ident(expr.field)}"
        return self.gen_value(expr)[0]

    def gen_receiver(self, expr) -> str:
        if isinstance(expr, (ast.Identifier, ast.FieldAccessExpr)):
            return self.gen_place(expr)
        text, prec = self.gen_value(expr)
        if prec < _ATOM or isinstance(expr, ast.StructLiteralExpr):
            text = f"({text})"
        return text

    def gen_Literal(self, node: ast.Literal) -> Tuple[str, int]:
        if node.kind == 'bool':
            return ("true" if node.value else "false"), _ATOM
        if node.kind == 'int':
            suffix = "_i64" if node.value > I32_MAX else ""
            return f"{node.value}{suffix}", _ATOM
        if node.kind == 'float':
            return float_literal(node.value), _ATOM
        return f'String::from("{escape_string(node.value)}")', _ATOM

    def gen_Identifier(self, node: ast.Identifier) -> Tuple[str, int]:
        name = rust_ident(node.name)
        if node.type.is_copy():
            return name, _ATOM
        if node.decision is OwnershipDecision.CLONE:
            return f"{name}.clone()", _ATOM
        return name, _ATOM

    def gen_FieldAccessExpr(self, node: ast.FieldAccessExpr) -> Tuple[str, int]:
        place = self.gen_place(node)
        if node.type.is_copy():
            return place, _ATOM
        return f"{place}.clone()", _ATOM

    def gen_BinaryExpr(self, node: ast.BinaryExpr) -> Tuple[str, int]:
        prec = _PREC[node.operator]
        if node.operator in ('==', '!=') and not node.left.type.is_copy():
            left = self.gen_borrow(node.left, mutable=False)
            right = self.gen_borrow(node.right, mutable=False)
            return f"{left} {node.operator} {right}", prec
        left = self.gen_operand(node.left, prec, prec == _COMPARISON)
        right = self.gen_operand(node.right, prec, True)
        return f"{left} {node.operator} {right}", prec

    def gen_operand(self, expr, prec: int, strict: bool) -> str:
        text, inner = self.gen_value(expr)
        if inner < prec or (strict and inner == prec) or isinstance(expr, ast.StructLiteralExpr):
            return f"({text})"
        return text

    def gen_UnaryExpr(self, node: ast.UnaryExpr) -> Tuple[str, int]:
        text, inner = self.gen_value(node.operand)
        if inner < _UNARY:
            text = f"({text})"
        return f"{node.operator}{text}", _UNARY

    def gen_StructLiteralExpr(self, node: ast.StructLiteralExpr) -> Tuple[str, int]:
        if not node.fields:
            return f"{rust_ident(node.name)} {{}}", _ATOM
        inits = ", ".join(
            f"{rust_ident(init.name)}: {self.gen_arg(init.value, Demand.OWN)}"
            for init in node.fields
        )
        return f"{rust_ident(node.name)} {{ {inits} }}", _ATOM

    def gen_CallExpr(self, node: ast.CallExpr) -> Tuple[str, int]:
        demands = node.arg_demands or [Demand.OWN] * len(node.args)
        args = [self.gen_arg(arg, demand) for arg, demand in zip(node.args, demands)]
        if node.target_kind == 'builtin':
            if node.builtin is None:
                raise UnknownBuiltinError(
                    message=f"No mapping for built-in '{node.module}.{node.name}' "
                            f"with {len(node.args)} argument(s)",
                    location=node.location,
                )
            # Keep compound arguments intact inside the template
            wrapped = []
            for i, (arg, demand, text) in enumerate(zip(node.args, demands, args)):
                if (demand is Demand.OWN and not arg.widened
                        and isinstance(arg, (ast.BinaryExpr, ast.UnaryExpr))
                        and not node.builtin.is_delimited(i)):
                    text = f"({text})"
                wrapped.append(text)
            return node.builtin.render(wrapped), _ATOM
        name = rust_ident(node.name)
        if node.target_kind == 'dependency':
            name = f"{rust_ident(node.module)}::{name}"
        return f"{name}({', '.join(args)})", _ATOM

    # --- helpers ---

    def is_ref_bound(self, node: ast.Identifier) -> bool:
        """Whether the identifier names a parameter received by reference"""
        symbol = self.symbol_table.symbol(node.symbol_id)
        return (symbol.kind is SymbolKind.PARAM
                and symbol.node.contract is not ParamContract.CONSUMED)
