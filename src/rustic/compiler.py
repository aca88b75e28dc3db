"""Compilation pipeline: source text to Rust text for one or more units."""
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import rustic.rustic_ast as ast
from rustic.codegen import RustCodeGenerator
from rustic.errors import CompileError, SourceLocation
from rustic.ownership import BindingInfo, OwnershipAnalyzer, ParamContract
from rustic.parser import Parser
from rustic.stdlib_map import MappingTable, default_table
from rustic.symbol_table import SymbolTable
from rustic.type_checker import TypeChecker

logger = logging.getLogger(__name__)


@dataclass
class CompileOptions:
    """Compilation options for Rustic"""
    output_dir: str = "out"
    map_file: Optional[str] = None  # Custom mapping table; bundled one when None
    jobs: int = 1
    verbose: bool = False
    dump_ast: bool = False


@dataclass
class SourceUnit:
    """One input to compile: a module name and its text"""
    name: str
    source: str
    file_path: str = "<string>"


@dataclass
class CompiledUnit:
    name: str
    output: str  # Generated Rust text
    module: ast.Module  # Annotated AST
    contracts: Dict[str, List[ParamContract]]
    symbol_table: Optional[SymbolTable] = None
    bindings: Dict[int, BindingInfo] = field(default_factory=dict)


def parse_source(source: str, module_name: str, file_path: Optional[str] = None) -> ast.Module:
    parser = Parser()
    return parser.parse(source, module_name=module_name, file_path=file_path or "<string>")


def compile_module(module: ast.Module, *, table: MappingTable, dependencies=None) -> CompiledUnit:
    """Resolve, analyze and emit an already parsed module"""
    dependencies = dependencies or {}
    checker = TypeChecker(table, dependencies)
    symbol_table = checker.check_module(module)
    result = OwnershipAnalyzer(symbol_table, dependencies).analyze(module)
    output = RustCodeGenerator(symbol_table, dependencies).generate(module)
    logger.info(f"Compiled module {module.name}")
    return CompiledUnit(
        name=module.name,
        output=output,
        module=module,
        contracts=result.contracts,
        symbol_table=symbol_table,
        bindings=result.bindings,
    )


def compile_source(source: str, module_name: str = "main", *, table: Optional[MappingTable] = None,
                   dependencies=None, file_path: Optional[str] = None) -> CompiledUnit:
    """Compile one unit of source text.

    Args:
        source: Program text
        module_name: Name of the produced Rust module
        table: Mapping table for built-in calls; the bundled table by default
        dependencies: Already compiled units this one imports, keyed by module name
        file_path: Path reported in diagnostics

    Raises:
        CompileError: The first error found, with its source location
    """
    table = table or default_table()
    module = parse_source(source, module_name, file_path)
    return compile_module(module, table=table, dependencies=dependencies)


def compile_units(units: List[SourceUnit], *, table: Optional[MappingTable] = None,
                  jobs: int = 1) -> Dict[str, CompiledUnit]:
    """Compile several units, independent ones in parallel.

    Units importing other inputs are compiled after them and receive their
    results as dependencies, one wave at a time. The first error of the
    earliest failing wave is raised, in input order within that wave.
    """
    table = table or default_table()
    names = [unit.name for unit in units]
    if len(set(names)) != len(names):
        duplicate = next(name for name in names if names.count(name) > 1)
        raise CompileError(message=f"Module '{duplicate}' is given more than once",
                           error_type="DriverError")

    with ThreadPoolExecutor(max_workers=max(1, jobs)) as executor:
        parsed = _gather(executor, units,
                         lambda unit: parse_source(unit.source, unit.name, unit.file_path))
        modules = {unit.name: module for unit, module in zip(units, parsed)}
        waves = _schedule(units, modules)

        results: Dict[str, CompiledUnit] = {}
        for i, wave in enumerate(waves):
            logger.debug(f"Wave {i + 1}: {', '.join(unit.name for unit in wave)}")
            compiled = _gather(executor, wave, lambda unit: compile_module(
                modules[unit.name], table=table, dependencies=dict(results)))
            for unit, result in zip(wave, compiled):
                results[unit.name] = result
    return {name: results[name] for name in names}


def _gather(executor, units, fn):
    futures = [executor.submit(fn, unit) for unit in units]
    # Wait for all of them so the reported error does not depend on timing
    errors = [future.exception() for future in futures]
    for error in errors:
        if error is not None:
            raise error
    return [future.result() for future in futures]


def _schedule(units: List[SourceUnit], modules: Dict[str, ast.Module]) -> List[List[SourceUnit]]:
    """Group units into waves; every unit comes after the inputs it imports"""
    deps = {
        unit.name: {imp.module_name for imp in modules[unit.name].imports
                    if imp.module_name in modules and imp.module_name != unit.name}
        for unit in units
    }
    for unit in units:
        for imp in modules[unit.name].imports:
            if imp.module_name == unit.name:
                raise CompileError(message=f"Module '{unit.name}' imports itself",
                                   error_type="ImportError",
                                   location=imp.location)
    done = set()
    waves = []
    remaining = list(units)
    while remaining:
        wave = [unit for unit in remaining if deps[unit.name] <= done]
        if not wave:
            cycle = ", ".join(unit.name for unit in remaining)
            first = modules[remaining[0].name]
            raise CompileError(message=f"Import cycle between modules: {cycle}",
                               error_type="ImportError",
                               location=first.location or SourceLocation(remaining[0].file_path, 1, 1))
        waves.append(wave)
        done.update(unit.name for unit in wave)
        remaining = [unit for unit in remaining if unit.name not in done]
    return waves
