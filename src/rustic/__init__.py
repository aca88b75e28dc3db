"""Rustic: a beginner-friendly language compiled to Rust.

Submodules:
- errors: CompileError hierarchy, SourceLocation and diagnostic rendering
- lexer: ply.lex tokenizer producing immutable Tokens
- rustic_ast: AST nodes, Type variant and ownership decisions
- parser: ply.yacc grammar building the AST
- symbol_table: scopes and symbols of one unit
- type_checker: name and type resolution
- ownership: move / borrow / clone inference and parameter contracts
- codegen: Rust emitter
- stdlib_map: mapping table for the math, io and string built-ins
- compiler: pipeline, CompileOptions and parallel multi-unit compilation
- rustic: command line driver
"""

from rustic.compiler import CompileOptions, CompiledUnit, SourceUnit, compile_source, compile_units
from rustic.errors import CompileError, SourceLocation

__all__ = [
    "CompileOptions",
    "CompiledUnit",
    "SourceUnit",
    "compile_source",
    "compile_units",
    "CompileError",
    "SourceLocation",
]
