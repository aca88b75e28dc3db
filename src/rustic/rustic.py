import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, List

import rustic.rustic_ast as ast
from rustic.codegen import rust_ident
from rustic.compiler import CompileOptions, CompiledUnit, SourceUnit, compile_units
from rustic.errors import CompileError, MappingTableError
from rustic.stdlib_map import MappingTable, default_table

logger = logging.getLogger(__name__)

SOURCE_SUFFIX = ".rsc"


def module_file_stem(name: str) -> str:
    """File name Rust expects for `pub mod <name>;`"""
    ident = rust_ident(name)
    return ident[2:] if ident.startswith("r#") else ident


class RusticCompiler:
    """Main compiler interface for Rustic"""

    def __init__(self, options: CompileOptions = None):
        self.options = options or CompileOptions()
        if self.options.map_file:
            self.table = MappingTable.load(self.options.map_file)
        else:
            self.table = default_table()
        self.sources: Dict[str, str] = {}  # module name -> text, for diagnostics

    def collect_files(self, inputs: List[str]) -> List[Path]:
        """Expand directory inputs into the `.rsc` files below them, in sorted order"""
        files = []
        for item in inputs:
            path = Path(item)
            if path.is_dir():
                found = sorted(path.rglob(f"*{SOURCE_SUFFIX}"))
                if not found:
                    raise CompileError(
                        message=f"No {SOURCE_SUFFIX} files found in {path}",
                        error_type="IOError",
                    )
                files.extend(found)
            else:
                files.append(path)
        return files

    def read_units(self, inputs: List[str]) -> List[SourceUnit]:
        units = []
        for path in self.collect_files(inputs):
            try:
                source = path.read_text(encoding='utf-8')
            except OSError as e:
                raise CompileError(
                    message=f"Cannot read {path}: {e.strerror or e}",
                    error_type="IOError",
                ) from e
            self.sources[str(path)] = source
            units.append(SourceUnit(path.stem, source, str(path)))
        return units

    def compile_files(self, inputs: List[str]) -> Dict[str, CompiledUnit]:
        """Compile source files and directories, returning the compiled units by module name"""
        units = self.read_units(inputs)
        logger.debug(f"Compiling {len(units)} unit(s) with {self.options.jobs} job(s)")
        return compile_units(units, table=self.table, jobs=self.options.jobs)

    def write_outputs(self, results: Dict[str, CompiledUnit]) -> List[Path]:
        """Write `<module>.rs` per unit and a `lib.rs` declaring all of them"""
        output_dir = Path(self.options.output_dir)
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
            written = []
            for name, unit in results.items():
                output_file = output_dir / f"{module_file_stem(name)}.rs"
                output_file.write_text(unit.output, encoding='utf-8')
                written.append(output_file)
            lib = output_dir / "lib.rs"
            lib.write_text("".join(f"pub mod {rust_ident(name)};\n" for name in sorted(results)),
                           encoding='utf-8')
            written.append(lib)
        except OSError as e:
            raise CompileError(
                message=f"Failed to write output to {output_dir}: {e}",
                error_type="IOError",
                notes=[f"Make sure you have write permissions for directory: {output_dir}"],
            ) from e
        for path in written:
            logger.info(f"Wrote {path}")
        return written

    def render_error(self, error: CompileError) -> str:
        source = None
        if error.location is not None:
            source = self.sources.get(error.location.file)
        return error.render(source)


def main(argv=None):
    """CLI entry point"""
    parser = argparse.ArgumentParser(description="Rustic to Rust compiler")
    parser.add_argument('files', nargs='+', help='Source files or directories of .rsc files')
    parser.add_argument('--output', '-o', default='out',
                        help='Output directory (default: out)')
    parser.add_argument('--map', dest='map_file',
                        help='Standard library mapping table (JSON)')
    parser.add_argument('--jobs', '-j', type=int, default=1,
                        help='Units compiled in parallel (default: 1)')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable debug logging')
    parser.add_argument('--dump-ast', action='store_true',
                        help='Dump the annotated AST of each unit')

    args = parser.parse_args(argv)

    options = CompileOptions(
        output_dir=args.output,
        map_file=args.map_file,
        jobs=args.jobs,
        verbose=args.verbose,
        dump_ast=args.dump_ast,
    )

    logging.basicConfig(
        level=logging.DEBUG if options.verbose else logging.WARNING,
        format='%(name)s - %(levelname)s - %(message)s',
    )

    try:
        compiler = RusticCompiler(options)
    except MappingTableError as e:
        print(str(e), file=sys.stderr)
        return 2

    try:
        results = compiler.compile_files(args.files)
        if options.dump_ast:
            for unit in results.values():
                print(ast.dump(unit.module))
        compiler.write_outputs(results)
    except CompileError as e:
        print(compiler.render_error(e), file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
